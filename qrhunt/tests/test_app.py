import unittest
from unittest.mock import MagicMock

from botocore.exceptions import EndpointConnectionError
from fastapi.testclient import TestClient

from qrhunt.app import create_app
from qrhunt.config import Settings
from qrhunt.dependencies import build_services

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


class TreasureHuntApiTests(unittest.TestCase):
    def setUp(self):
        self.services = build_services(
            Settings(
                use_in_memory_backends=True,
                public_base_url="https://hunts.example.com",
            )
        )
        self.client = TestClient(create_app(self.services))

    def tearDown(self):
        self.services.close()

    def _create_hunt(self, name="Park Hunt", headers=None):
        response = self.client.post(
            "/api/hunts", json={"display_name": name}, headers=headers
        )
        self.assertEqual(response.status_code, 201)
        return response.json()["id"]

    def _create_clue(self, hunt_id, text):
        response = self.client.post(f"/api/hunts/{hunt_id}/clues", json={"text": text})
        self.assertEqual(response.status_code, 201)
        return response.json()["id"]

    def test_create_returns_editor_link(self):
        response = self.client.post("/api/hunts", json={"display_name": "Park"})
        payload = response.json()
        self.assertEqual(
            payload["link"], f"https://hunts.example.com/hunt/{payload['id']}"
        )

    def test_create_and_list_hunts(self):
        hunt_id = self._create_hunt()
        response = self.client.get("/api/hunts")
        self.assertEqual(response.status_code, 200)
        hunts = response.json()["hunts"]
        self.assertEqual([h["id"] for h in hunts], [hunt_id])
        self.assertEqual(hunts[0]["display_name"], "Park Hunt")
        self.assertEqual(hunts[0]["clues"], [])

    def test_known_hunts_are_scoped_per_device(self):
        mine = self._create_hunt("Mine", headers={"X-Device-Id": "phone-a"})
        theirs = self._create_hunt("Theirs", headers={"X-Device-Id": "phone-b"})

        response = self.client.get("/api/hunts", headers={"X-Device-Id": "phone-a"})
        self.assertEqual([h["id"] for h in response.json()["hunts"]], [mine])
        response = self.client.get("/api/hunts", headers={"X-Device-Id": "phone-b"})
        self.assertEqual([h["id"] for h in response.json()["hunts"]], [theirs])

    def test_rename_hunt(self):
        hunt_id = self._create_hunt()
        response = self.client.patch(
            f"/api/hunts/{hunt_id}", json={"display_name": "Garden Hunt"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})
        hunt = self.client.get(f"/api/hunts/{hunt_id}").json()
        self.assertEqual(hunt["display_name"], "Garden Hunt")

    def test_missing_hunt_returns_404(self):
        self.assertEqual(self.client.get("/api/hunts/nope").status_code, 404)
        response = self.client.patch("/api/hunts/nope", json={"display_name": "x"})
        self.assertEqual(response.status_code, 404)
        response = self.client.post("/api/hunts/nope/clues", json={"text": "x"})
        self.assertEqual(response.status_code, 404)

    def test_clue_editing_and_reorder(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")
        bench = self._create_clue(hunt_id, "Find the bench")

        response = self.client.patch(
            f"/api/hunts/{hunt_id}/clues/{oak}", json={"hint": "Tallest tree"}
        )
        self.assertEqual(response.status_code, 200)

        response = self.client.put(
            f"/api/hunts/{hunt_id}/clue-order", json={"clue_ids": [bench, oak]}
        )
        self.assertEqual(response.status_code, 200)

        clues = self.client.get(f"/api/hunts/{hunt_id}").json()["clues"]
        self.assertEqual([c["id"] for c in clues], [bench, oak])
        self.assertEqual([c["order"] for c in clues], [0, 1])
        self.assertEqual(clues[1]["text"], "Find the oak")
        self.assertEqual(clues[1]["hint"], "Tallest tree")

    def test_reorder_rejects_unknown_ids(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")
        response = self.client.put(
            f"/api/hunts/{hunt_id}/clue-order", json={"clue_ids": [oak, "ghost"]}
        )
        self.assertEqual(response.status_code, 400)

    def test_delete_clue(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")
        gate = self._create_clue(hunt_id, "Find the gate")
        response = self.client.delete(f"/api/hunts/{hunt_id}/clues/{oak}")
        self.assertEqual(response.status_code, 200)
        clues = self.client.get(f"/api/hunts/{hunt_id}").json()["clues"]
        self.assertEqual([(c["id"], c["order"]) for c in clues], [(gate, 0)])

        response = self.client.delete(f"/api/hunts/{hunt_id}/clues/{oak}")
        self.assertEqual(response.status_code, 404)

    def test_upload_and_fetch_media(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")

        response = self.client.post(
            f"/api/hunts/{hunt_id}/clues/{oak}/media",
            files={"file": ("oak.png", PNG_BYTES, "image/png")},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["media_type"], "image")
        self.assertTrue(payload["media_url"].startswith(f"hunt-media/{hunt_id}/{oak}-"))
        self.assertTrue(payload["media_url"].endswith(".png"))

        media = self.client.get("/api/media", params={"ref": payload["media_url"]})
        self.assertEqual(media.status_code, 200)
        self.assertEqual(media.content, PNG_BYTES)
        self.assertEqual(media.headers["content-type"], "image/png")
        self.assertIn("last-modified", media.headers)

        response = self.client.delete(f"/api/hunts/{hunt_id}/clues/{oak}/media")
        self.assertEqual(response.status_code, 200)
        clue = self.client.get(f"/api/hunts/{hunt_id}").json()["clues"][0]
        self.assertIsNone(clue["media_url"])
        self.assertIsNone(clue["media_type"])

    def test_serving_media_does_not_pin_handles(self):
        hunt_id = self._create_hunt()
        paths = []
        for index in range(5):
            clue_id = self._create_clue(hunt_id, f"Clue {index}")
            response = self.client.post(
                f"/api/hunts/{hunt_id}/clues/{clue_id}/media",
                files={"file": (f"{index}.png", PNG_BYTES * 100, "image/png")},
            )
            paths.append(response.json()["media_url"])

        for path in paths:
            media = self.client.get("/api/media", params={"ref": path})
            self.assertEqual(media.status_code, 200)

        cache = self.services.media_cache
        self.assertEqual(cache._handles, {})
        self.assertEqual(sorted(cache.cached_paths()), sorted(paths))

    def test_upload_rejects_unsupported_type(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")
        response = self.client.post(
            f"/api/hunts/{hunt_id}/clues/{oak}/media",
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["detail"], "Please select a valid image or video file"
        )
        self.assertEqual(self.services.storage.stored_objects, {})

    def test_storage_outage_returns_503(self):
        hunt_id = self._create_hunt()
        oak = self._create_clue(hunt_id, "Find the oak")
        self.services.storage.upload_bytes = MagicMock(
            side_effect=EndpointConnectionError(endpoint_url="https://cos.example.com")
        )
        response = self.client.post(
            f"/api/hunts/{hunt_id}/clues/{oak}/media",
            files={"file": ("oak.png", PNG_BYTES, "image/png")},
        )
        self.assertEqual(response.status_code, 503)
        clue = self.client.get(f"/api/hunts/{hunt_id}").json()["clues"][0]
        self.assertIsNone(clue["media_url"])

    def test_missing_media_returns_404(self):
        response = self.client.get("/api/media", params={"ref": "hunt-media/x/y.png"})
        self.assertEqual(response.status_code, 404)

    def test_external_media_redirects(self):
        response = self.client.get(
            "/api/media",
            params={"ref": "https://cdn.example.com/oak.jpg"},
            follow_redirects=False,
        )
        self.assertIn(response.status_code, (302, 307))
        self.assertEqual(response.headers["location"], "https://cdn.example.com/oak.jpg")

    def test_player_view_remembers_hunt(self):
        hunt_id = self._create_hunt(headers={"X-Device-Id": "owner"})
        oak = self._create_clue(hunt_id, "Find the oak")
        gate = self._create_clue(hunt_id, "Find the gate")
        player = {"X-Device-Id": "player"}

        response = self.client.get(f"/api/hunts/{hunt_id}/clues/{oak}", headers=player)
        self.assertEqual(response.status_code, 200)
        view = response.json()
        self.assertEqual(view["hunt_name"], "Park Hunt")
        self.assertEqual(view["clue"]["text"], "Find the oak")
        self.assertEqual((view["position"], view["total"]), (1, 2))
        self.assertFalse(view["is_last"])
        self.assertIsNone(view["media_link"])

        view = self.client.get(
            f"/api/hunts/{hunt_id}/clues/{gate}", headers=player
        ).json()
        self.assertTrue(view["is_last"])

        known = self.client.get("/api/hunts", headers=player).json()["hunts"]
        self.assertEqual([h["id"] for h in known], [hunt_id])

    def test_player_view_missing_clue(self):
        hunt_id = self._create_hunt()
        response = self.client.get(f"/api/hunts/{hunt_id}/clues/ghost")
        self.assertEqual(response.status_code, 404)

    def test_print_sheet(self):
        hunt_id = self._create_hunt()
        self._create_clue(hunt_id, "Find the oak")
        response = self.client.get(f"/api/hunts/{hunt_id}/print")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/html"))
        self.assertIn("Find the oak", response.text)
        self.assertIn("data:image/png;base64,", response.text)

    def test_delete_hunt(self):
        hunt_id = self._create_hunt()
        self._create_clue(hunt_id, "Find the oak")
        response = self.client.delete(f"/api/hunts/{hunt_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/api/hunts/{hunt_id}").status_code, 404)
        self.assertEqual(self.client.get("/api/hunts").json()["hunts"], [])
        self.assertEqual(self.client.delete(f"/api/hunts/{hunt_id}").status_code, 200)


if __name__ == "__main__":
    unittest.main()
