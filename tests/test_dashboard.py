"""Test the dashboard procedures: manga browsing, API keys, backups and data."""

import pytest

from kiroo_sync.database import (
    API_KEYS_TABLE,
    BACKUPS_TABLE,
    CHAPTERS_TABLE,
    EXTENSION_REPOS_TABLE,
    HISTORY_TABLE,
    MANGA_TABLE,
    SYNC_HISTORY_TABLE,
    TRACKING_TABLE,
)
from kiroo_sync.routes.backup import download_filename
from payloads import rich_backup


@pytest.fixture
def library(client, fake_db, device_headers):
    """The test user's library after one rich push."""
    response = client.post("/sync", json=rich_backup(), headers=device_headers)
    assert response.status_code == 200
    return {row["title"]: row for row in fake_db.rows(MANGA_TABLE)}


class TestMangaList:
    def test_lists_with_display_values_and_progress(self, client, auth_headers, library):
        response = client.get("/rpc/manga.list", headers=auth_headers)

        assert response.status_code == 200
        items = {item["id"]: item for item in response.json()}
        frieren = items[library["Frieren"]["id"]]
        assert frieren["title"] == "Sousou no Frieren"
        assert frieren["totalChapters"] == 2
        assert frieren["readChapters"] == 1
        assert items[library["Dungeon Meshi"]["id"]]["totalChapters"] == 0

    def test_search_matches_title_and_author(self, client, auth_headers, library):
        by_title = client.get("/rpc/manga.list?search=MESHI", headers=auth_headers).json()
        by_author = client.get("/rpc/manga.list?search=yamada", headers=auth_headers).json()

        assert [item["title"] for item in by_title] == ["Dungeon Meshi"]
        assert len(by_author) == 2

    def test_favorite_filter(self, client, auth_headers, library):
        assert client.get("/rpc/manga.list?favorite=false", headers=auth_headers).json() == []
        assert len(client.get("/rpc/manga.list?favorite=true", headers=auth_headers).json()) == 2

    def test_paging(self, client, auth_headers, library):
        assert len(client.get("/rpc/manga.list?limit=1", headers=auth_headers).json()) == 1
        assert client.get("/rpc/manga.list?limit=1&offset=2", headers=auth_headers).json() == []
        assert client.get("/rpc/manga.list?limit=500", headers=auth_headers).status_code == 422

    def test_scoped_to_caller(self, client, other_auth_headers, library):
        assert client.get("/rpc/manga.list", headers=other_auth_headers).json() == []


class TestMangaGet:
    def test_detail_with_related_rows(self, client, auth_headers, library):
        manga_id = library["Frieren"]["id"]

        response = client.get(f"/rpc/manga.get?id={manga_id}", headers=auth_headers)

        assert response.status_code == 200
        detail = response.json()
        assert detail["title"] == "Sousou no Frieren"
        assert [c["chapterNumber"] for c in detail["chapters"]] == [2, 1]
        assert len(detail["tracking"]) == 1
        assert detail["history"][0]["chapterUrl"] == "/chapter/1"
        assert [c["name"] for c in detail["categories"]] == ["Reading", "Favorites"]

    def test_other_users_manga_not_found(self, client, other_auth_headers, library):
        manga_id = library["Frieren"]["id"]

        response = client.get(f"/rpc/manga.get?id={manga_id}", headers=other_auth_headers)
        assert response.status_code == 404

    def test_unknown_id_not_found(self, client, auth_headers, library):
        assert client.get("/rpc/manga.get?id=missing", headers=auth_headers).status_code == 404


class TestMangaStats:
    def test_stats(self, client, auth_headers, library):
        response = client.get("/rpc/manga.stats", headers=auth_headers)

        assert response.json() == {
            "totalManga": 2,
            "favoriteManga": 2,
            "totalChapters": 2,
            "readChapters": 1,
            "completionRate": 50.0,
        }

    def test_empty_library(self, client, auth_headers):
        body = client.get("/rpc/manga.stats", headers=auth_headers).json()
        assert body["completionRate"] == 0.0


class TestMangaDelete:
    def test_delete_removes_children(self, client, fake_db, auth_headers, library):
        manga_id = library["Frieren"]["id"]

        response = client.post("/rpc/manga.delete", json={"id": manga_id}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert [row["title"] for row in fake_db.rows(MANGA_TABLE)] == ["Dungeon Meshi"]
        for table in (CHAPTERS_TABLE, TRACKING_TABLE, HISTORY_TABLE, "manga_categories"):
            assert all(row["manga_id"] != manga_id for row in fake_db.rows(table))

    def test_delete_twice_not_found(self, client, auth_headers, library):
        manga_id = library["Frieren"]["id"]
        client.post("/rpc/manga.delete", json={"id": manga_id}, headers=auth_headers)

        response = client.post("/rpc/manga.delete", json={"id": manga_id}, headers=auth_headers)
        assert response.status_code == 404

    def test_cannot_delete_other_users_manga(self, client, fake_db, other_auth_headers, library):
        manga_id = library["Frieren"]["id"]

        response = client.post("/rpc/manga.delete", json={"id": manga_id}, headers=other_auth_headers)

        assert response.status_code == 404
        assert len(fake_db.rows(MANGA_TABLE)) == 2


class TestApiKeys:
    def test_create_returns_raw_key_once(self, client, fake_db, auth_headers):
        response = client.post(
            "/rpc/apiKeys.create",
            json={"name": "Phone", "deviceName": "Pixel 9"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["key"].startswith("ks_")
        assert body["deviceName"] == "Pixel 9"
        assert "will not be shown again" in body["message"]
        stored = fake_db.rows(API_KEYS_TABLE)[0]
        assert stored["key_hash"] != body["key"]

    def test_created_key_authenticates_sync(self, client, auth_headers):
        key = client.post("/rpc/apiKeys.create", json={"name": "Phone"}, headers=auth_headers).json()["key"]

        response = client.get("/sync", headers={"x-api-key": key})
        assert response.status_code == 200

    def test_list_never_exposes_digest(self, client, auth_headers, api_key_record):
        response = client.get("/rpc/apiKeys.list", headers=auth_headers)

        assert response.status_code == 200
        (key,) = response.json()
        assert key["id"] == api_key_record["id"]
        assert key["name"] == "Phone"
        assert "keyHash" not in key
        assert "key" not in key

    def test_list_scoped_to_caller(self, client, other_auth_headers, api_key_record):
        assert client.get("/rpc/apiKeys.list", headers=other_auth_headers).json() == []

    def test_revoke(self, client, auth_headers, device_headers, api_key_record):
        response = client.post("/rpc/apiKeys.revoke", json={"id": api_key_record["id"]}, headers=auth_headers)

        assert response.status_code == 200
        assert client.get("/sync", headers=device_headers).status_code == 401

    def test_cannot_revoke_other_users_key(self, client, fake_db, other_auth_headers, api_key_record):
        response = client.post("/rpc/apiKeys.revoke", json={"id": api_key_record["id"]}, headers=other_auth_headers)

        assert response.status_code == 404
        assert len(fake_db.rows(API_KEYS_TABLE)) == 1

    def test_name_required(self, client, auth_headers):
        response = client.post("/rpc/apiKeys.create", json={"name": ""}, headers=auth_headers)
        assert response.status_code == 422

    def test_create_rate_limited(self, client, auth_headers):
        for _ in range(10):
            response = client.post("/rpc/apiKeys.create", json={"name": "Phone"}, headers=auth_headers)
            assert response.status_code == 200

        response = client.post("/rpc/apiKeys.create", json={"name": "Phone"}, headers=auth_headers)
        assert response.status_code == 429


class TestBackups:
    def _create(self, client, auth_headers, name: str = "nightly") -> dict:
        response = client.post("/rpc/backup.create", json={"name": name}, headers=auth_headers)
        assert response.status_code == 200
        return response.json()

    def test_create_snapshots_library(self, client, auth_headers, library):
        summary = self._create(client, auth_headers)

        assert summary["name"] == "nightly"
        assert summary["mangaCount"] == 2
        assert summary["chapterCount"] == 2
        assert summary["sizeBytes"] > 0
        assert "data" not in summary

    def test_get_returns_document(self, client, auth_headers, library):
        backup_id = self._create(client, auth_headers)["id"]

        detail = client.get(f"/rpc/backup.get?id={backup_id}", headers=auth_headers).json()

        assert len(detail["data"]["backupManga"]) == 2
        assert len(detail["data"]["backupCategories"]) == 2

    def test_snapshot_is_immutable(self, client, auth_headers, device_headers, library):
        backup_id = self._create(client, auth_headers)["id"]
        client.post("/rpc/manga.delete", json={"id": library["Frieren"]["id"]}, headers=auth_headers)

        detail = client.get(f"/rpc/backup.get?id={backup_id}", headers=auth_headers).json()
        assert len(detail["data"]["backupManga"]) == 2

    def test_list(self, client, auth_headers, library):
        self._create(client, auth_headers, "one")
        self._create(client, auth_headers, "two")

        response = client.get("/rpc/backup.list", headers=auth_headers)

        assert response.status_code == 200
        assert {b["name"] for b in response.json()} == {"one", "two"}
        assert client.get("/rpc/backup.list?limit=51", headers=auth_headers).status_code == 422

    def test_download(self, client, auth_headers, library):
        backup_id = self._create(client, auth_headers)["id"]

        response = client.post("/rpc/backup.download", json={"id": backup_id}, headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["filename"].startswith("kiroo-sync-backup-nightly-")
        assert body["filename"].endswith(".json")
        assert len(body["data"]["backupManga"]) == 2

    def test_delete(self, client, fake_db, auth_headers, library):
        backup_id = self._create(client, auth_headers)["id"]

        response = client.post("/rpc/backup.delete", json={"id": backup_id}, headers=auth_headers)

        assert response.status_code == 200
        assert fake_db.rows(BACKUPS_TABLE) == []
        assert client.get(f"/rpc/backup.get?id={backup_id}", headers=auth_headers).status_code == 404

    def test_other_user_cannot_touch_backup(self, client, auth_headers, other_auth_headers, library):
        backup_id = self._create(client, auth_headers)["id"]

        assert client.get(f"/rpc/backup.get?id={backup_id}", headers=other_auth_headers).status_code == 404
        assert client.post(
            "/rpc/backup.download", json={"id": backup_id}, headers=other_auth_headers
        ).status_code == 404
        assert client.post(
            "/rpc/backup.delete", json={"id": backup_id}, headers=other_auth_headers
        ).status_code == 404

    def test_download_filename(self):
        backup = {"name": "weekly", "created_at": "2024-03-05T23:59:00+00:00"}
        assert download_filename(backup) == "kiroo-sync-backup-weekly-2024-03-05.json"


class TestData:
    def test_categories_in_order(self, client, auth_headers, library):
        categories = client.get("/rpc/data.categories", headers=auth_headers).json()
        assert [c["name"] for c in categories] == ["Reading", "Favorites"]

    def test_collections_camelized(self, client, auth_headers, library):
        repos = client.get("/rpc/data.extensionRepos", headers=auth_headers).json()
        searches = client.get("/rpc/data.savedSearches", headers=auth_headers).json()
        preferences = client.get("/rpc/data.preferences", headers=auth_headers).json()
        source_preferences = client.get("/rpc/data.sourcePreferences", headers=auth_headers).json()

        assert repos[0]["baseUrl"] == "https://repo.example.org"
        assert searches[0]["name"] == "Isekai"
        assert {p["key"] for p in preferences} == {"library_display_mode", "auto_update"}
        assert source_preferences[0]["sourceKey"] == "source_2499283573021220255"

    def test_stats(self, client, auth_headers, other_auth_headers, library):
        assert client.get("/rpc/data.stats", headers=auth_headers).json() == {
            "extensionRepos": 1,
            "savedSearches": 1,
            "feeds": 1,
            "categories": 2,
            "preferences": 2,
            "sourcePreferences": 1,
        }
        assert set(client.get("/rpc/data.stats", headers=other_auth_headers).json().values()) == {0}

    def test_delete_extension_repo(self, client, fake_db, auth_headers, library):
        repo_id = fake_db.rows(EXTENSION_REPOS_TABLE)[0]["id"]

        response = client.post("/rpc/data.deleteExtensionRepo", json={"id": repo_id}, headers=auth_headers)

        assert response.status_code == 200
        assert fake_db.rows(EXTENSION_REPOS_TABLE) == []
        again = client.post("/rpc/data.deleteExtensionRepo", json={"id": repo_id}, headers=auth_headers)
        assert again.status_code == 404

    @pytest.mark.parametrize(
        "path, table",
        [("data.deleteSavedSearch", "saved_searches"), ("data.deleteFeed", "feeds")],
        ids=["saved-search", "feed"],
    )
    def test_delete_scoped_to_caller(self, client, fake_db, other_auth_headers, library, path, table):
        row_id = fake_db.rows(table)[0]["id"]

        response = client.post(f"/rpc/{path}", json={"id": row_id}, headers=other_auth_headers)

        assert response.status_code == 404
        assert len(fake_db.rows(table)) == 1

    def test_reset_all_data_keeps_api_keys(self, client, fake_db, auth_headers, device_headers, library):
        self_backup = client.post("/rpc/backup.create", json={"name": "before"}, headers=auth_headers)
        assert self_backup.status_code == 200

        response = client.post("/rpc/data.resetAllData", headers=auth_headers)

        assert response.status_code == 200
        for table in (MANGA_TABLE, CHAPTERS_TABLE, "categories", "feeds", BACKUPS_TABLE, SYNC_HISTORY_TABLE):
            assert fake_db.rows(table) == []
        assert len(fake_db.rows(API_KEYS_TABLE)) == 1
        assert client.get("/sync", headers=device_headers).status_code == 200
