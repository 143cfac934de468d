import base64
import json
from pathlib import Path

import jsonpatch
import yaml
from fastapi.testclient import TestClient

from injector.config.injection import InjectionConfig, InjectorConfig
from injector.config.loader import load_config_directory
from injector.config.store import ConfigStore
from injector.webhook.admission import AdmissionHandler
from injector.webhook.server import app, create_app, get_handler

FIXTURES = Path(__file__).parent / "fixtures"
ANNOTATION_NAMESPACE = "injector.unittest.com"


def _pod(name: str) -> dict:
    return yaml.safe_load((FIXTURES / "pods" / name).read_text(encoding="utf-8"))


def _review(pod: dict, *, kind: str = "Pod", operation: str = "CREATE", namespace: str = "default") -> dict:
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": "705ab4f5-6393-11e8-b7cc-42010a800002",
            "kind": {"group": "", "version": "v1", "kind": kind},
            "resource": {"group": "", "version": "v1", "resource": "pods"},
            "namespace": namespace,
            "operation": operation,
            "object": pod,
        },
    }


def _handler(deny: bool = False) -> AdmissionHandler:
    store = ConfigStore(lambda: load_config_directory(FIXTURES / "sidecars", ANNOTATION_NAMESPACE))
    return AdmissionHandler(store, frozenset({"ignore-me"}), deny_on_misconfiguration=deny)


class TestMutateEndpoint:
    def setup_method(self) -> None:
        self.client = TestClient(create_app(_handler()))

    def test_injects_requested_template(self) -> None:
        pod = _pod("init-containers.yaml")
        response = self.client.post("/mutate", json=_review(pod))
        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "AdmissionReview"
        result = body["response"]
        assert result["uid"] == "705ab4f5-6393-11e8-b7cc-42010a800002"
        assert result["allowed"] is True
        assert result["patchType"] == "JSONPatch"

        patch = json.loads(base64.b64decode(result["patch"]))
        mutated = jsonpatch.apply_patch(pod, patch)
        assert [c["name"] for c in mutated["spec"]["initContainers"]] == ["init-iptables", "init-config"]
        assert mutated["metadata"]["annotations"][f"{ANNOTATION_NAMESPACE}/status"] == "injected"

    def test_already_injected_pod_is_left_alone(self) -> None:
        pod = _pod("init-containers.yaml")
        pod["metadata"]["annotations"][f"{ANNOTATION_NAMESPACE}/status"] = "injected"
        result = self.client.post("/mutate", json=_review(pod, operation="UPDATE")).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result

    def test_ignored_namespace_from_request(self) -> None:
        pod = _pod("init-containers.yaml")
        del pod["metadata"]["namespace"]
        result = self.client.post("/mutate", json=_review(pod, namespace="ignore-me")).json()["response"]
        assert result == {"uid": "705ab4f5-6393-11e8-b7cc-42010a800002", "allowed": True}

    def test_pod_without_request_annotation(self) -> None:
        result = self.client.post("/mutate", json=_review(_pod("complex.yaml"))).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result

    def test_non_pod_objects_are_allowed(self) -> None:
        result = self.client.post("/mutate", json=_review({"metadata": {}}, kind="Deployment")).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result

    def test_delete_operations_are_allowed(self) -> None:
        result = self.client.post("/mutate", json=_review(_pod("env1.yaml"), operation="DELETE")).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result

    def test_unknown_template_admitted_with_warning(self) -> None:
        pod = _pod("complex.yaml")
        pod["metadata"]["annotations"] = {f"{ANNOTATION_NAMESPACE}/request": "this-doesnt-exist"}
        result = self.client.post("/mutate", json=_review(pod)).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result
        assert "this-doesnt-exist" in result["warnings"][0]

    def test_missing_object_is_denied(self) -> None:
        review = _review({})
        review["request"]["object"] = None
        result = self.client.post("/mutate", json=review).json()["response"]
        assert result["allowed"] is False
        assert result["status"]["code"] == 400

    def test_malformed_review_is_bad_request(self) -> None:
        assert self.client.post("/mutate", json={"kind": "AdmissionReview"}).status_code == 400
        assert self.client.post("/mutate", json=[1, 2, 3]).status_code == 400
        assert self.client.post("/mutate", json={"request": {"kind": {}}}).status_code == 400

    def test_health_reports_template_count(self) -> None:
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "templates": 6}


class TestMisconfigurationPolicy:
    def setup_method(self) -> None:
        self.client = TestClient(create_app(_handler(deny=True)))

    def test_unknown_template_denied(self) -> None:
        pod = _pod("complex.yaml")
        pod["metadata"]["annotations"] = {f"{ANNOTATION_NAMESPACE}/request": "this-doesnt-exist"}
        result = self.client.post("/mutate", json=_review(pod)).json()["response"]
        assert result["allowed"] is False
        assert "this-doesnt-exist" in result["status"]["message"]

    def test_unknown_target_container_denied(self) -> None:
        pod = _pod("env1.yaml")
        pod["spec"]["containers"][0]["name"] = "web"
        result = self.client.post("/mutate", json=_review(pod)).json()["response"]
        assert result["allowed"] is False
        assert "web" not in result["status"]["message"]
        assert "'app'" in result["status"]["message"]


class TestModuleApp:
    def setup_method(self) -> None:
        self._original_override = app.dependency_overrides.get(get_handler)
        app.dependency_overrides[get_handler] = lambda: _handler()

    def teardown_method(self) -> None:
        if self._original_override is not None:
            app.dependency_overrides[get_handler] = self._original_override
        else:
            app.dependency_overrides.pop(get_handler, None)

    def test_module_app_uses_handler_dependency(self) -> None:
        client = TestClient(app)
        result = client.post("/mutate", json=_review(_pod("volume-mounts.yaml"))).json()["response"]
        assert result["allowed"] is True
        assert result["patchType"] == "JSONPatch"


class TestUpdateOperations:
    def setup_method(self) -> None:
        self.client = TestClient(create_app(_handler(deny=True)))

    def test_update_of_uninjected_pod_is_not_patched(self) -> None:
        pod = _pod("init-containers.yaml")
        result = self.client.post("/mutate", json=_review(pod, operation="UPDATE")).json()["response"]
        assert result == {"uid": "705ab4f5-6393-11e8-b7cc-42010a800002", "allowed": True}

    def test_update_with_unknown_template_is_allowed_with_warning(self) -> None:
        pod = _pod("complex.yaml")
        pod["metadata"]["annotations"] = {f"{ANNOTATION_NAMESPACE}/request": "this-doesnt-exist"}
        result = self.client.post("/mutate", json=_review(pod, operation="UPDATE")).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result
        assert "this-doesnt-exist" in result["warnings"][0]


def _dated_handler(deny: bool) -> AdmissionHandler:
    template = InjectionConfig.from_dict(
        yaml.safe_load(
            "name: env1\n"
            "env:\n"
            "  - containerName: app\n"
            "    name: RELEASE_DATE\n"
            "    value: 2024-01-01\n"
        )
    )
    store = ConfigStore.from_config(
        InjectorConfig.build([template], annotation_namespace=ANNOTATION_NAMESPACE)
    )
    return AdmissionHandler(store, frozenset(), deny_on_misconfiguration=deny)


class TestPatchEncodingFailures:
    def test_encoding_failure_admitted_with_warning(self) -> None:
        client = TestClient(create_app(_dated_handler(deny=False)))
        result = client.post("/mutate", json=_review(_pod("env1.yaml"))).json()["response"]
        assert result["allowed"] is True
        assert "patch" not in result
        assert "unable to inject 'env1'" in result["warnings"][0]

    def test_encoding_failure_denied_when_configured(self) -> None:
        client = TestClient(create_app(_dated_handler(deny=True)))
        result = client.post("/mutate", json=_review(_pod("env1.yaml"))).json()["response"]
        assert result["allowed"] is False
        assert result["status"]["code"] == 500
        assert "unable to inject 'env1'" in result["status"]["message"]
