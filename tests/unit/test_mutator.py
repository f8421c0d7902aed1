# ABOUTME: Unit tests for the resource mutator
# ABOUTME: Tests manifests, create/delete/sync contracts, and the no-rollback composite create

import json

import httpx
import pytest
import respx

from argocd_fleet.models import FleetContext, LocatedInstance, MutationRequest, SyncResult
from argocd_fleet.mutator import (
    application_manifest,
    create_argo_application,
    create_argo_project,
    create_argo_resources,
    delete_app,
    delete_app_and_project,
    delete_project,
    project_manifest,
    sync_argo_app,
)
from argocd_fleet.utils.client import (
    ArgocdInstanceNotFound,
    ArgocdPermissionError,
    ArgocdResourceCreationError,
    ArgocdTransportError,
)

URL_1 = "https://argo-instance-1.example.com"
API = f"{URL_1}/api/v1"

PERMISSION_DENIED = {
    "error": "permission denied",
    "message": "permission denied: projects, delete, testProject, sub: backstage",
}


@pytest.fixture
def request_body() -> MutationRequest:
    """Create request for argoInstance1."""
    return MutationRequest(
        base_url=URL_1,
        argo_token="testToken",
        project_name="testProject",
        namespace="testNamespace",
        source_repo="https://github.com/backstage/backstage",
        source_path="kubernetes/nonproduction",
        label_value="backstageId",
        app_name="testApp",
    )


@pytest.fixture
def located() -> LocatedInstance:
    """argoInstance1 as returned by the locator."""
    return LocatedInstance(name="argoInstance1", url=URL_1, app_names=["testAppName"])


def mock_session() -> respx.Route:
    return respx.post(f"{API}/session").mock(
        return_value=httpx.Response(200, json={"token": "testToken"})
    )


@pytest.mark.unit
class TestManifests:
    """Tests for project_manifest and application_manifest."""

    def test_project_manifest(self, request_body: MutationRequest):
        """Test the project allows the repo into the namespace."""
        manifest = project_manifest(request_body)

        assert manifest == {
            "project": {
                "metadata": {"name": "testProject"},
                "spec": {
                    "destinations": [
                        {"namespace": "testNamespace", "server": "https://kubernetes.default.svc"}
                    ],
                    "sourceRepos": ["https://github.com/backstage/backstage"],
                },
            }
        }

    def test_application_manifest(self, request_body: MutationRequest):
        """Test the application references project, repo, path, and label."""
        manifest = application_manifest(request_body)

        assert manifest["metadata"]["name"] == "testApp"
        assert manifest["metadata"]["labels"] == {"argocd-fleet/app": "backstageId"}
        spec = manifest["spec"]
        assert spec["project"] == "testProject"
        assert spec["destination"] == {
            "namespace": "testNamespace",
            "server": "https://kubernetes.default.svc",
        }
        assert spec["source"] == {
            "repoURL": "https://github.com/backstage/backstage",
            "path": "kubernetes/nonproduction",
        }
        assert spec["syncPolicy"]["automated"]["prune"] is True

    def test_application_manifest_without_optional_fields(self):
        """Test label and path are omitted when not given."""
        req = MutationRequest(
            base_url=URL_1,
            argo_token="t",
            project_name="p",
            namespace="ns",
            source_repo="https://git/repo",
            app_name="a",
        )

        manifest = application_manifest(req)

        assert "labels" not in manifest["metadata"]
        assert manifest["spec"]["source"] == {"repoURL": "https://git/repo"}


@pytest.mark.unit
class TestCreate:
    """Tests for create_argo_project, create_argo_application, create_argo_resources."""

    @respx.mock
    async def test_create_project_posts_manifest(
        self, fleet: FleetContext, request_body: MutationRequest
    ):
        """Test the project manifest is posted with the bearer token."""
        route = respx.post(f"{API}/projects").mock(
            return_value=httpx.Response(200, json={"metadata": {"name": "testProject"}})
        )

        body = await create_argo_project(fleet, request_body)

        assert body == {"metadata": {"name": "testProject"}}
        request = route.calls[0].request
        assert request.headers["Authorization"] == "Bearer testToken"
        assert json.loads(request.content) == project_manifest(request_body)

    @respx.mock
    async def test_create_project_returns_error_body(
        self, fleet: FleetContext, request_body: MutationRequest
    ):
        """Test application-level failures come back as data."""
        error_body = {"response": {"status": 403, "error": "forbidden", "message": "denied"}}
        respx.post(f"{API}/projects").mock(return_value=httpx.Response(403, json=error_body))

        assert await create_argo_project(fleet, request_body) == error_body

    @respx.mock
    async def test_create_application_returns_error_body(
        self, fleet: FleetContext, request_body: MutationRequest
    ):
        """Test the application create passes errors through unmodified."""
        respx.post(f"{API}/applications").mock(
            return_value=httpx.Response(400, json={"error": "existing application spec differs"})
        )

        body = await create_argo_application(fleet, request_body)

        assert body == {"error": "existing application spec differs"}

    @respx.mock
    async def test_create_non_json_is_transport_error(
        self, fleet: FleetContext, request_body: MutationRequest
    ):
        """Test an unreadable create response raises."""
        respx.post(f"{API}/projects").mock(return_value=httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(ArgocdTransportError):
            await create_argo_project(fleet, request_body)

    @respx.mock
    async def test_create_resources_success(self, fleet: FleetContext):
        """Test project then application are created and True returned."""
        mock_session()
        project = respx.post(f"{API}/projects").mock(
            return_value=httpx.Response(200, json={"metadata": {"name": "testProject"}})
        )
        application = respx.post(f"{API}/applications").mock(
            return_value=httpx.Response(200, json={"metadata": {"name": "testApp"}})
        )

        result = await create_argo_resources(
            fleet,
            argo_instance="argoInstance1",
            app_name="testApp",
            project_name="testProject",
            namespace="testNamespace",
            source_repo="https://github.com/backstage/backstage",
            source_path="kubernetes/nonproduction",
            label_value="backstageId",
        )

        assert result is True
        assert project.call_count == 1
        sent = json.loads(application.calls[0].request.content)
        assert sent["spec"]["project"] == "testProject"
        assert sent["metadata"]["labels"] == {"argocd-fleet/app": "backstageId"}

    @respx.mock
    async def test_create_resources_project_error(self, fleet: FleetContext):
        """Test a project error aborts before the application is created."""
        mock_session()
        respx.post(f"{API}/projects").mock(
            return_value=httpx.Response(400, json={"error": "Failed to Create project"})
        )

        with pytest.raises(ArgocdResourceCreationError, match="Error creating argo project"):
            await create_argo_resources(
                fleet,
                argo_instance="argoInstance1",
                app_name="testApp",
                project_name="testProject",
                namespace="testNamespace",
                source_repo="https://github.com/backstage/backstage",
            )

    @respx.mock
    async def test_create_resources_application_error_keeps_project(self, fleet: FleetContext):
        """Test an application error raises and the project is not rolled back."""
        mock_session()
        project = respx.post(f"{API}/projects").mock(
            return_value=httpx.Response(200, json={"metadata": {"name": "testProject"}})
        )
        respx.post(f"{API}/applications").mock(
            return_value=httpx.Response(400, json={"error": "Failed to create application"})
        )

        with pytest.raises(ArgocdResourceCreationError, match="Error creating argo app"):
            await create_argo_resources(
                fleet,
                argo_instance="argoInstance1",
                app_name="testApp",
                project_name="testProject",
                namespace="testNamespace",
                source_repo="https://github.com/backstage/backstage",
            )

        assert project.call_count == 1
        assert not [c for c in respx.calls if c.request.method == "DELETE"]

    @respx.mock
    async def test_create_resources_nested_error(self, fleet: FleetContext):
        """Test the nested response envelope counts as an error."""
        mock_session()
        respx.post(f"{API}/projects").mock(
            return_value=httpx.Response(
                403,
                json={"response": {"status": 403, "error": "forbidden", "message": "denied"}},
            )
        )

        with pytest.raises(ArgocdResourceCreationError, match="forbidden"):
            await create_argo_resources(
                fleet,
                argo_instance="argoInstance1",
                app_name="testApp",
                project_name="testProject",
                namespace="testNamespace",
                source_repo="https://github.com/backstage/backstage",
            )

    @respx.mock
    async def test_create_resources_unknown_instance(self, fleet: FleetContext):
        """Test an unknown instance fails before any request."""
        with pytest.raises(ArgocdInstanceNotFound):
            await create_argo_resources(
                fleet,
                argo_instance="argoInstance9",
                app_name="testApp",
                project_name="testProject",
                namespace="testNamespace",
                source_repo="https://github.com/backstage/backstage",
            )

        assert not respx.calls


@pytest.mark.unit
class TestDelete:
    """Tests for delete_project, delete_app, delete_app_and_project."""

    @respx.mock
    async def test_delete_project_success(self, fleet: FleetContext):
        """Test an empty 2xx body means deleted."""
        route = respx.delete(f"{API}/projects/testProject").mock(
            return_value=httpx.Response(200, content=b"")
        )

        assert await delete_project(
            fleet, base_url=URL_1, project_name="testProject", token="testToken"
        ) is True
        assert route.calls[0].request.headers["Authorization"] == "Bearer testToken"

    @respx.mock
    async def test_delete_project_soft_failure(self, fleet: FleetContext):
        """Test a bare 500 returns False."""
        respx.delete(f"{API}/projects/testProject").mock(return_value=httpx.Response(500))

        assert await delete_project(
            fleet, base_url=URL_1, project_name="testProject", token="testToken"
        ) is False

    @respx.mock
    async def test_delete_project_permission_denied(self, fleet: FleetContext):
        """Test an error/message body raises with the exact message."""
        respx.delete(f"{API}/projects/testProject").mock(
            return_value=httpx.Response(403, json=PERMISSION_DENIED)
        )

        with pytest.raises(ArgocdPermissionError) as exc_info:
            await delete_project(
                fleet, base_url=URL_1, project_name="testProject", token="testToken"
            )

        assert str(exc_info.value) == PERMISSION_DENIED["message"]

    @respx.mock
    async def test_delete_app_success(self, fleet: FleetContext):
        """Test application delete success."""
        respx.delete(f"{API}/applications/testApp").mock(
            return_value=httpx.Response(200, json={})
        )

        assert await delete_app(fleet, base_url=URL_1, app_name="testApp", token="t") is True

    @respx.mock
    async def test_delete_app_soft_failure(self, fleet: FleetContext):
        """Test application delete soft failure."""
        respx.delete(f"{API}/applications/testApp").mock(return_value=httpx.Response(500))

        assert await delete_app(fleet, base_url=URL_1, app_name="testApp", token="t") is False

    @respx.mock
    async def test_delete_app_permission_denied(self, fleet: FleetContext):
        """Test application delete hard failure carries the message verbatim."""
        respx.delete(f"{API}/applications/testApp").mock(
            return_value=httpx.Response(403, json=PERMISSION_DENIED)
        )

        with pytest.raises(ArgocdPermissionError, match="permission denied: projects"):
            await delete_app(fleet, base_url=URL_1, app_name="testApp", token="t")

    @respx.mock
    async def test_delete_escapes_names_in_path(self, fleet: FleetContext):
        """Test names are sent as single, escaped path segments."""
        app_route = respx.delete(url__regex=rf"{API}/applications/.+").mock(
            return_value=httpx.Response(200, json={})
        )
        project_route = respx.delete(url__regex=rf"{API}/projects/.+").mock(
            return_value=httpx.Response(200, json={})
        )

        await delete_app(fleet, base_url=URL_1, app_name="team/web app", token="t")
        await delete_project(fleet, base_url=URL_1, project_name="team?x", token="t")

        assert app_route.calls[0].request.url.raw_path == b"/api/v1/applications/team%2Fweb%20app"
        assert project_route.calls[0].request.url.raw_path == b"/api/v1/projects/team%3Fx"

    @respx.mock
    async def test_delete_app_and_project(self, fleet: FleetContext):
        """Test both deletes run with one session token."""
        session = mock_session()
        respx.delete(f"{API}/applications/testApp").mock(return_value=httpx.Response(200))
        respx.delete(f"{API}/projects/testProject").mock(return_value=httpx.Response(200))

        result = await delete_app_and_project(
            fleet, argo_instance="argoInstance1", app_name="testApp", project_name="testProject"
        )

        assert result.app_deleted is True
        assert result.project_deleted is True
        assert session.call_count == 1

    @respx.mock
    async def test_delete_app_and_project_after_soft_failure(self, fleet: FleetContext):
        """Test the project delete is still attempted after an app soft failure."""
        mock_session()
        respx.delete(f"{API}/applications/testApp").mock(return_value=httpx.Response(500))
        project = respx.delete(f"{API}/projects/testProject").mock(
            return_value=httpx.Response(200)
        )

        result = await delete_app_and_project(
            fleet, argo_instance="argoInstance1", app_name="testApp", project_name="testProject"
        )

        assert result.app_deleted is False
        assert result.project_deleted is True
        assert project.called

    @respx.mock
    async def test_delete_app_and_project_permission_denied(self, fleet: FleetContext):
        """Test a permission error stops the teardown."""
        mock_session()
        respx.delete(f"{API}/applications/testApp").mock(
            return_value=httpx.Response(403, json=PERMISSION_DENIED)
        )

        with pytest.raises(ArgocdPermissionError):
            await delete_app_and_project(
                fleet,
                argo_instance="argoInstance1",
                app_name="testApp",
                project_name="testProject",
            )


@pytest.mark.unit
class TestSync:
    """Tests for sync_argo_app."""

    @respx.mock
    async def test_sync_success(self, fleet: FleetContext, located: LocatedInstance):
        """Test a 2xx sync reports success."""
        route = respx.post(f"{API}/applications/testAppName/sync").mock(
            return_value=httpx.Response(200, json={})
        )

        result = await sync_argo_app(
            fleet, instance=located, token="testToken", app_name="testAppName"
        )

        assert result == SyncResult(
            message="Re-synced testAppName on argoInstance1", status="Success"
        )
        assert route.calls[0].request.headers["Authorization"] == "Bearer testToken"

    @respx.mock
    async def test_sync_permission_denied_is_failure(
        self, fleet: FleetContext, located: LocatedInstance
    ):
        """Test a 403 with an error body is reported, not raised."""
        respx.post(f"{API}/applications/testAppName/sync").mock(
            return_value=httpx.Response(403, json=PERMISSION_DENIED)
        )

        result = await sync_argo_app(
            fleet, instance=located, token="testToken", app_name="testAppName"
        )

        assert result == SyncResult(
            message="Failed to resync testAppName on argoInstance1", status="Failure"
        )

    @respx.mock
    async def test_sync_server_error_is_failure(
        self, fleet: FleetContext, located: LocatedInstance
    ):
        """Test a 500 is reported as a failure."""
        respx.post(f"{API}/applications/testAppName/sync").mock(return_value=httpx.Response(500))

        result = await sync_argo_app(
            fleet, instance=located, token="testToken", app_name="testAppName"
        )

        assert result.status == "Failure"

    @respx.mock
    async def test_sync_transport_error_is_failure(
        self, fleet: FleetContext, located: LocatedInstance
    ):
        """Test network failures never escape sync."""
        respx.post(f"{API}/applications/testAppName/sync").mock(side_effect=httpx.ConnectError)

        result = await sync_argo_app(
            fleet, instance=located, token="testToken", app_name="testAppName"
        )

        assert result.status == "Failure"

    @respx.mock
    async def test_sync_escapes_app_name(self, fleet: FleetContext, located: LocatedInstance):
        """Test the application name is escaped in the sync path."""
        route = respx.post(url__regex=rf"{API}/applications/.+/sync").mock(
            return_value=httpx.Response(200, json={})
        )

        result = await sync_argo_app(fleet, instance=located, token="t", app_name="team/web")

        assert route.calls[0].request.url.raw_path == b"/api/v1/applications/team%2Fweb/sync"
        assert (result.instance, result.app_name) == ("argoInstance1", "team/web")
