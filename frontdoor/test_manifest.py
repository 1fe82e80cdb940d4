import logging

import pytest

from frontdoor.errors import ManifestError, StartupError
from frontdoor.manifest import load_manifest, parse_manifest


def write(tmp_path, content):
    path = tmp_path / "asset-manifest.json"
    path.write_text(content)
    return str(path)


class TestLoadManifest:
    def test_entrypoints_in_order(self, tmp_path):
        path = write(
            tmp_path,
            '{"files": {"main.js": "/static/js/main.js"},'
            ' "entrypoints": ["static/js/runtime.js", "static/css/main.css", "static/js/main.js"]}',
        )

        assert load_manifest(path) == (
            "static/js/runtime.js",
            "static/css/main.css",
            "static/js/main.js",
        )

    def test_result_is_immutable(self, tmp_path):
        path = write(tmp_path, '{"entrypoints": ["/a.js"]}')
        assert isinstance(load_manifest(path), tuple)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(str(tmp_path / "nope.json"))
        assert "nope.json" in str(exc_info.value)

    def test_truncated_json(self, tmp_path):
        path = write(tmp_path, '{"entrypoints": ["/static/app.js", ')
        with pytest.raises(ManifestError):
            load_manifest(path)

    def test_entrypoints_not_an_array(self, tmp_path):
        path = write(tmp_path, '{"entrypoints": "not-an-array"}')
        with pytest.raises(ManifestError) as exc_info:
            load_manifest(path)
        assert path in str(exc_info.value)

    def test_non_string_entry(self, tmp_path):
        path = write(tmp_path, '{"entrypoints": ["/a.js", 3]}')
        with pytest.raises(ManifestError):
            load_manifest(path)

    def test_top_level_not_an_object(self, tmp_path):
        path = write(tmp_path, '["/a.js"]')
        with pytest.raises(ManifestError):
            load_manifest(path)

    def test_manifest_error_is_startup_error(self, tmp_path):
        with pytest.raises(StartupError):
            load_manifest(str(tmp_path / "missing.json"))


class TestParseManifest:
    def test_missing_key_yields_empty_list(self, caplog):
        logger = logging.getLogger("uvicorn.error")
        orig_propagate = logger.propagate
        logger.propagate = True
        try:
            with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
                assert parse_manifest(b'{"files": {}}') == ()
        finally:
            logger.propagate = orig_propagate

        assert any("no entrypoints" in r.getMessage() for r in caplog.records)

    def test_empty_list(self):
        assert parse_manifest(b'{"entrypoints": []}') == ()
