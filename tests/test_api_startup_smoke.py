from fastapi.testclient import TestClient


REQUIRED_ROUTES = {
    "/api/v1/auth/login",
    "/api/v1/auth/me",
    "/api/v1/customers/{customer_id}",
    "/api/v1/projects/{project_id}",
    "/api/v1/tasks/{task_id}/subtasks",
    "/api/v1/tasks/subtasks/{subtask_id}",
    "/api/v1/tasks/{task_id}/comments/{comment_id}",
    "/api/v1/tickets/{ticket_id}/comments/{comment_id}",
    "/api/v1/users/{user_id}/password",
    "/api/v1/consumers/{consumer_id}",
    "/api/v1/audit-logs/export",
    "/api/v1/notifications/read-all",
    "/api/v1/settings/test-email",
    "/api/v1/dashboard",
    "/api/v1/customer-dashboard",
    "/api/v1/system/status",
    "/api/v1/cron/task-deadlines",
    "/portal/login",
}


def test_api_startup_and_router_registration(monkeypatch):
    from portal import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/")
        health_response = client.get("/health")
        docs_response = client.get("/docs")
        openapi_response = client.get("/openapi.json")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert health_response.json() == {"status": "healthy"}
    assert response.headers.get("X-Request-ID")
    assert docs_response.status_code == 200
    assert openapi_response.status_code == 200

    paths = {route.path for route in main.app.routes}
    assert REQUIRED_ROUTES.issubset(paths)


def test_protected_route_without_session_is_unauthorized(monkeypatch):
    from portal import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/api/v1/customers")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
