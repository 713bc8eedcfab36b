import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from retraction_cem.runtime_config import CONFIG_PATH_ENV, load_runtime_config, resolve_config_path


class RuntimeConfigTests(unittest.TestCase):
    def test_missing_file_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            cfg = load_runtime_config(Path(tmp) / "missing.toml")
        self.assertEqual(cfg.matching.sample_size, 10)
        self.assertEqual(cfg.matching.year_min, 2000)
        self.assertEqual(cfg.matching.year_max, 2019)
        self.assertEqual(cfg.matching.control_reason_label, "non-retracted")
        self.assertEqual(cfg.ranks.delimiter, ";")
        self.assertIsNone(cfg.paths.mapping_csv)

    def test_reads_values(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.toml"
            path.write_text(
                "[paths]\nrank_dir = \"ranks\"\nmapping_csv = \"m.csv\"\n"
                "[matching]\nsample_size = 5\nseed = 0\nyear_min = 2005\nyear_max = 2010\n"
                "[ranks]\ndelimiter = \",\"\n",
                encoding="utf-8",
            )
            cfg = load_runtime_config(path)
        self.assertEqual(cfg.paths.rank_dir, "ranks")
        self.assertEqual(cfg.paths.mapping_csv, "m.csv")
        self.assertEqual(cfg.paths.metadata_csv, "data/metadata.csv")
        self.assertEqual(cfg.matching.sample_size, 5)
        self.assertEqual(cfg.matching.seed, 0)
        self.assertEqual((cfg.matching.year_min, cfg.matching.year_max), (2005, 2010))
        self.assertEqual(cfg.ranks.delimiter, ",")

    def test_invalid_values_fall_back(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.toml"
            path.write_text(
                "[matching]\nsample_size = -3\nseed = \"abc\"\nyear_min = 2019\nyear_max = 2000\n"
                "[ranks]\ndelimiter = \";;\"\nurl_template = \"https://example.org/no-year\"\n",
                encoding="utf-8",
            )
            cfg = load_runtime_config(path)
        self.assertEqual(cfg.matching.sample_size, 10)
        self.assertEqual(cfg.matching.seed, 42)
        self.assertEqual((cfg.matching.year_min, cfg.matching.year_max), (2000, 2019))
        self.assertEqual(cfg.ranks.delimiter, ";")
        self.assertIn("{year}", cfg.ranks.url_template)

    def test_parse_error_uses_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "runtime.toml"
            path.write_text("[matching\nsample_size = 3\n", encoding="utf-8")
            cfg = load_runtime_config(path)
        self.assertEqual(cfg.matching.sample_size, 10)

    def test_env_overrides_path(self) -> None:
        with patch.dict(os.environ, {CONFIG_PATH_ENV: "/tmp/elsewhere.toml"}):
            self.assertEqual(resolve_config_path(), Path("/tmp/elsewhere.toml"))
        self.assertEqual(resolve_config_path(Path("x.toml")), Path("x.toml"))


if __name__ == "__main__":
    unittest.main()
