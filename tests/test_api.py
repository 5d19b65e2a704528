"""End-to-end tests for the messagely HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from fastapi.testclient import TestClient

from messagely.api import create_app
from messagely.config import Settings
from messagely.database import Database


class MessagelyAPITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tempdir.name) / "messagely.sqlite3"
        self.settings = Settings(database_path=db_path, secret_key="tests-secret-key", bcrypt_work_factor=4)
        self.database = Database(db_path)
        self.app = create_app(settings=self.settings, database=self.database)
        self.client = TestClient(self.app)
        self.client.__enter__()

        self.alice = self._register("alice", "pw1", "Alice")
        self.bob = self._register("bob", "pw2", "Bob")
        self.eve = self._register("eve", "pw3", "Eve")

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        self._tempdir.cleanup()

    def _register(self, username: str, password: str, first_name: str) -> dict[str, str]:
        response = self.client.post(
            "/auth/register",
            json={
                "username": username,
                "password": password,
                "first_name": first_name,
                "last_name": "Tester",
                "phone": "555-0100",
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def _send(self, headers: dict[str, str], to_username: str, body: str) -> int:
        response = self.client.post("/messages", headers=headers, json={"to_username": to_username, "body": body})
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["message"]["id"]

    def test_healthcheck(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_register_response_excludes_password(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={
                "username": "carol",
                "password": "pw4",
                "first_name": "Carol",
                "last_name": "Danvers",
                "phone": "555-0103",
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        payload = response.json()
        self.assertIn("token", payload)
        self.assertEqual(payload["user"]["username"], "carol")
        self.assertNotIn("password", payload["user"])
        self.assertNotIn("password_hash", payload["user"])
        self.assertNotIn("pw4", response.text)

    def test_duplicate_registration_conflicts(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={
                "username": "alice",
                "password": "again",
                "first_name": "Alice",
                "last_name": "Again",
                "phone": "555-0100",
            },
        )
        self.assertEqual(response.status_code, 409)

    def test_register_rejects_blank_fields(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={"username": "  ", "password": "pw", "first_name": "X", "last_name": "Y", "phone": "1"},
        )
        self.assertEqual(response.status_code, 422)

    def test_login(self) -> None:
        ok = self.client.post("/auth/login", json={"username": "alice", "password": "pw1"})
        self.assertEqual(ok.status_code, 200, ok.text)
        token = ok.json()["token"]

        listing = self.client.get("/users", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(listing.status_code, 200)

        wrong = self.client.post("/auth/login", json={"username": "alice", "password": "wrongpw"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.headers.get("www-authenticate"), "Bearer")

        unknown = self.client.post("/auth/login", json={"username": "nobody", "password": "x"})
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(unknown.json(), wrong.json())

    def test_user_endpoints_require_credential(self) -> None:
        self.assertEqual(self.client.get("/users").status_code, 401)
        self.assertEqual(self.client.get("/users/alice").status_code, 401)
        bogus = {"Authorization": "Bearer not-a-token"}
        self.assertEqual(self.client.get("/users", headers=bogus).status_code, 401)

    def test_list_and_read_users(self) -> None:
        listing = self.client.get("/users", headers=self.eve)
        self.assertEqual(listing.status_code, 200)
        users = listing.json()["users"]
        self.assertEqual([user["username"] for user in users], ["alice", "bob", "eve"])
        self.assertEqual(set(users[0]), {"username", "first_name", "last_name", "phone"})

        detail = self.client.get("/users/bob", headers=self.eve)
        self.assertEqual(detail.status_code, 200)
        user = detail.json()["user"]
        self.assertEqual(user["first_name"], "Bob")
        self.assertIn("join_at", user)
        self.assertIn("last_login_at", user)
        self.assertNotIn("password_hash", user)

        missing = self.client.get("/users/ghost", headers=self.eve)
        self.assertEqual(missing.status_code, 404)

    def test_message_lifecycle(self) -> None:
        message_id = self._send(self.alice, "bob", "hi")

        unread = self.client.get(f"/messages/{message_id}", headers=self.bob)
        self.assertEqual(unread.status_code, 200, unread.text)
        message = unread.json()["message"]
        self.assertIsNone(message["read_at"])
        self.assertEqual(message["from_user"]["username"], "alice")
        self.assertEqual(message["to_user"]["username"], "bob")

        read = self.client.post(f"/messages/{message_id}/read", headers=self.bob)
        self.assertEqual(read.status_code, 200, read.text)
        receipt = read.json()["message"]
        self.assertEqual(receipt["id"], message_id)

        seen = self.client.get(f"/messages/{message_id}", headers=self.alice).json()["message"]
        self.assertIsNotNone(seen["read_at"])
        self.assertGreaterEqual(
            datetime.fromisoformat(seen["read_at"]),
            datetime.fromisoformat(seen["sent_at"]),
        )

        again = self.client.post(f"/messages/{message_id}/read", headers=self.bob)
        self.assertEqual(again.status_code, 409)
        unchanged = self.client.get(f"/messages/{message_id}", headers=self.bob).json()["message"]
        self.assertEqual(unchanged["read_at"], seen["read_at"])

    def test_sender_is_taken_from_credential(self) -> None:
        response = self.client.post(
            "/messages",
            headers=self.eve,
            json={"from_username": "alice", "to_username": "bob", "body": "forged"},
        )
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["message"]["from_username"], "eve")

    def test_message_visibility_is_limited_to_participants(self) -> None:
        message_id = self._send(self.alice, "bob", "private")

        self.assertEqual(self.client.get(f"/messages/{message_id}", headers=self.eve).status_code, 403)
        self.assertEqual(self.client.get(f"/messages/{message_id}").status_code, 401)
        self.assertEqual(self.client.get("/messages/9999", headers=self.alice).status_code, 404)

    def test_only_recipient_may_mark_read(self) -> None:
        message_id = self._send(self.alice, "bob", "hi")

        self.assertEqual(self.client.post(f"/messages/{message_id}/read", headers=self.alice).status_code, 403)
        self.assertEqual(self.client.post(f"/messages/{message_id}/read", headers=self.eve).status_code, 403)

        message = self.client.get(f"/messages/{message_id}", headers=self.bob).json()["message"]
        self.assertIsNone(message["read_at"])

    def test_send_to_unknown_user(self) -> None:
        response = self.client.post("/messages", headers=self.alice, json={"to_username": "ghost", "body": "hi"})
        self.assertEqual(response.status_code, 404)

    def test_message_listings(self) -> None:
        self._send(self.alice, "bob", "one")
        self._send(self.alice, "eve", "two")

        inbox = self.client.get("/users/bob/to", headers=self.bob)
        self.assertEqual(inbox.status_code, 200)
        messages = inbox.json()["messages"]
        self.assertEqual(len(messages), 1)
        self.assertEqual(messages[0]["from_user"]["username"], "alice")

        outbox = self.client.get("/users/alice/from", headers=self.alice).json()["messages"]
        self.assertEqual([item["to_user"]["username"] for item in outbox], ["bob", "eve"])

        self.assertEqual(self.client.get("/users/bob/to", headers=self.eve).status_code, 403)
        self.assertEqual(self.client.get("/users/alice/from", headers=self.bob).status_code, 403)

    def test_out_of_range_message_id_is_not_found(self) -> None:
        huge_id = 2**64 + 1

        read = self.client.get(f"/messages/{huge_id}", headers=self.alice)
        self.assertEqual(read.status_code, 404, read.text)
        self.assertIn("detail", read.json())

        mark = self.client.post(f"/messages/{huge_id}/read", headers=self.bob)
        self.assertEqual(mark.status_code, 404, mark.text)

    def test_register_rejects_password_with_nul_byte(self) -> None:
        response = self.client.post(
            "/auth/register",
            json={
                "username": "mallory",
                "password": "pw\u0000x",
                "first_name": "Mallory",
                "last_name": "M",
                "phone": "1",
            },
        )
        self.assertEqual(response.status_code, 400, response.text)
        self.assertEqual(self.client.get("/users/mallory", headers=self.alice).status_code, 404)

    def test_login_accepts_padded_username(self) -> None:
        response = self.client.post("/auth/login", json={"username": "  alice ", "password": "pw1"})
        self.assertEqual(response.status_code, 200, response.text)

        token = response.json()["token"]
        message_id = self._send(self.bob, "alice", "hello")
        detail = self.client.get(f"/messages/{message_id}", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(detail.status_code, 200, detail.text)

    def test_storage_failure_returns_503(self) -> None:
        message_id = self._send(self.alice, "bob", "hi")
        with self.database.transaction() as conn:
            conn.execute("DROP TABLE messages")

        response = self.client.get(f"/messages/{message_id}", headers=self.bob)
        self.assertEqual(response.status_code, 503)
        self.assertEqual(set(response.json()), {"detail"})

        failed = self.client.post("/messages", headers=self.alice, json={"to_username": "bob", "body": "lost"})
        self.assertEqual(failed.status_code, 503)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
