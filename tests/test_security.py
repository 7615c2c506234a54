import base64
import unittest


def _basic(user, password):
    token = base64.b64encode(f"{user}:{password}".encode()).decode("ascii")
    return f"Basic {token}"


class BasicCredentialsParsingTests(unittest.TestCase):
    def test_valid_header(self):
        from tasklink.security import parse_basic_credentials

        creds = parse_basic_credentials(_basic("ops", "s3:cret"))
        self.assertEqual(creds, ("ops", "s3:cret"))

    def test_rejects_other_schemes_and_garbage(self):
        from tasklink.security import parse_basic_credentials

        self.assertIsNone(parse_basic_credentials(None))
        self.assertIsNone(parse_basic_credentials("Bearer abc"))
        self.assertIsNone(parse_basic_credentials("Basic !!!notbase64!!!"))
        no_colon = base64.b64encode(b"opsonly").decode("ascii")
        self.assertIsNone(parse_basic_credentials(f"Basic {no_colon}"))


class BasicAuthMiddlewareTests(unittest.TestCase):
    def setUp(self):
        from fastapi import FastAPI
        from fastapi.testclient import TestClient

        from tasklink.security import BasicAuthMiddleware

        app = FastAPI()
        app.add_middleware(BasicAuthMiddleware, username="ops", password="pw")

        @app.get("/health")
        def health():
            return {"status": "healthy"}

        @app.delete("/api/task-links/{task_id}")
        def unlink(task_id: str):
            return {"deleted": task_id}

        self.client = TestClient(app)

    def test_health_is_public(self):
        self.assertEqual(self.client.get("/health").status_code, 200)

    def test_mutating_route_requires_credentials(self):
        resp = self.client.delete("/api/task-links/t-1")
        self.assertEqual(resp.status_code, 401)
        self.assertIn("Basic", resp.headers["WWW-Authenticate"])

        wrong = self.client.delete("/api/task-links/t-1", headers={"Authorization": _basic("ops", "no")})
        self.assertEqual(wrong.status_code, 401)

        ok = self.client.delete("/api/task-links/t-1", headers={"Authorization": _basic("ops", "pw")})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json(), {"deleted": "t-1"})


if __name__ == "__main__":
    unittest.main()
