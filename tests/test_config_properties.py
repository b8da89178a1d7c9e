"""Property-based tests for configuration management."""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

from hypothesis import given
from hypothesis import strategies as st

from patchnotes_bot.config import FEED_KINDS, Config

names = st.text(min_size=1, max_size=40).filter(
    lambda x: "," not in x and x.strip() and "\x00" not in x
)


class TestConfigProperties:
    """Property-based tests for Config class."""

    @given(st.lists(names, min_size=1, max_size=10))
    def test_product_names_parsed_in_order(self, product_names):
        """Every configured product name is used, trimmed, in the given order."""
        with patch.dict(os.environ, {"PRODUCT_NAMES": ",".join(product_names)}, clear=True):
            selector = Config().get_selector_config()

        assert selector.product_names == [name.strip() for name in product_names]

    @given(
        st.lists(
            st.tuples(st.sampled_from(FEED_KINDS), st.booleans()),
            min_size=1,
            max_size=8,
        )
    )
    def test_enabled_sources_keep_file_order(self, entries):
        """Sources come back in file order with disabled ones left out."""
        feeds = [
            {"type": kind, "url": f"https://example.com/{i}", "enabled": enabled}
            for i, (kind, enabled) in enumerate(entries)
        ]
        expected = [feed["url"] for feed in feeds if feed["enabled"]]

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "feeds.json"
            path.write_text(json.dumps({"feeds": feeds}), encoding="utf-8")
            with patch.dict(os.environ, {"FEEDS_FILE": str(path)}, clear=True):
                config = Config()
                if not expected:
                    return
                sources = config.get_feed_sources()

        assert [source.url for source in sources] == expected
        assert [source.kind for source in sources] == [
            feed["type"] for feed in feeds if feed["enabled"]
        ]
