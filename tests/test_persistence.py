import os
import shutil
import tempfile

import pytest
from pydantic import ValidationError

from langpad.persistence import PreferenceStore


class TestPreferences:

    def setup_method(self):
        self.persist_dir = tempfile.mkdtemp(prefix="langpad_prefs_")

    def teardown_method(self):
        if os.path.exists(self.persist_dir):
            shutil.rmtree(self.persist_dir)

    def test_defaults_without_file(self):
        prefs = PreferenceStore(base_path=self.persist_dir).preferences
        assert prefs.openai_api_key is None
        assert prefs.debug_visible is False
        assert prefs.theme == "system"

    def test_save_load(self):
        store = PreferenceStore(base_path=self.persist_dir)
        store.set_api_key("sk-test")
        store.set_theme("dark")
        assert store.toggle_debug_visible() is True
        assert os.path.exists(store.path)

        reloaded = PreferenceStore(base_path=self.persist_dir).preferences
        assert reloaded.openai_api_key == "sk-test"
        assert reloaded.theme == "dark"
        assert reloaded.debug_visible is True

    def test_invalid_theme(self):
        store = PreferenceStore(base_path=self.persist_dir)
        with pytest.raises(ValidationError):
            store.set_theme("blue")
        assert store.preferences.theme == "system"

    def test_corrupt_file_falls_back_to_defaults(self):
        with open(os.path.join(self.persist_dir, PreferenceStore.FILENAME), "w") as f:
            f.write("{not json")
        assert PreferenceStore(base_path=self.persist_dir).preferences.openai_api_key is None

    def test_creates_missing_directory(self):
        nested = os.path.join(self.persist_dir, "a", "b")
        store = PreferenceStore(base_path=nested)
        store.set_debug_visible(True)
        assert os.path.exists(os.path.join(nested, "preferences.json"))
