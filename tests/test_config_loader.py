from dataclasses import dataclass
from pathlib import Path

import pytest

from detelecine.config_loader import (
    ConfigError,
    _sanitize_section,
    drop_duplicate_policy,
    guessing_method,
    load_config,
    pattern_flags,
    third_n_match_policy,
)
from detelecine.datatypes import (
    DropDuplicate,
    GuessingMethod,
    Patterns,
    ScriptConfig,
    UseThirdNMatch,
)


def _write(tmp_path: Path, text: str) -> Path:
    cfg_path = tmp_path / "detelecine.toml"
    cfg_path.write_text(text, encoding="utf-8")
    return cfg_path


def test_load_defaults(tmp_path: Path) -> None:
    for app in (load_config(None), load_config(str(tmp_path / "missing.toml"))):
        assert app.guessing.method == "mics"
        assert app.guessing.minimum_length == 10
        assert app.guessing.third_n_match == "never"
        assert app.guessing.decimation == "first"
        assert app.guessing.patterns == ["cccnn", "ccnnn", "ccccc"]
        assert app.script.source_filter == "bs.VideoSource"
        assert app.script.show_crop_in_preview is False
        assert app.collector.max_requests == 8
        assert app.logging.level == "WARNING"


def test_load_overrides(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path,
        "\n".join(
            [
                "[guessing]",
                'method = "Matches"',
                "minimum_length = 25",
                'third_n_match = "if prettier"',
                'decimation = "uglier per cycle"',
                'patterns = ["CCCNN"]',
                "[script]",
                'source_filter = " lsmas.LWLibavSource "',
                'show_crop_in_preview = "1"',
                "[collector]",
                "max_requests = 2",
                "[logging]",
                'level = "debug"',
            ]
        ),
    )

    app = load_config(str(cfg_path))

    assert app.guessing.method == "matches"
    assert app.guessing.minimum_length == 25
    assert app.guessing.third_n_match == "if prettier"
    assert app.guessing.decimation == "uglier per cycle"
    assert app.guessing.patterns == ["cccnn"]
    assert app.script.source_filter == "lsmas.LWLibavSource"
    assert app.script.show_crop_in_preview is True
    assert app.collector.max_requests == 2
    assert app.logging.level == "DEBUG"


def test_byte_order_mark_is_accepted(tmp_path: Path) -> None:
    cfg_path = tmp_path / "bom.toml"
    cfg_path.write_bytes(b"\xef\xbb\xbf[collector]\nmax_requests = 3\n")

    assert load_config(str(cfg_path)).collector.max_requests == 3


@pytest.mark.parametrize(
    ("toml_snippet", "message"),
    [
        ('[guessing]\nmethod = "guess"\n', "guessing.method"),
        ("[guessing]\nminimum_length = 0\n", "guessing.minimum_length"),
        ('[guessing]\nminimum_length = "ten"\n', "guessing.minimum_length"),
        ('[guessing]\nthird_n_match = "sometimes"\n', "guessing.third_n_match"),
        ('[guessing]\ndecimation = "third"\n', "guessing.decimation"),
        ("[guessing]\npatterns = []\n", "guessing.patterns"),
        ('[guessing]\npatterns = ["cnccc"]\n', "guessing.patterns"),
        ('[script]\nsource_filter = ""\n', "script.source_filter"),
        ('[script]\nshow_crop_in_preview = "maybe"\n', "script.show_crop_in_preview"),
        ("[collector]\nmax_requests = 0\n", "collector.max_requests"),
        ('[logging]\nlevel = "chatty"\n', "logging.level"),
        ("[collector]\nunknown = 1\n", "collector"),
        ("collector = 5\n", "[collector]"),
        ("[guessing\n", "Failed to parse TOML"),
    ],
)
def test_validation_errors(tmp_path: Path, toml_snippet: str, message: str) -> None:
    cfg_path = _write(tmp_path, toml_snippet)

    with pytest.raises(ConfigError) as excinfo:
        load_config(str(cfg_path))

    assert message in str(excinfo.value)


def test_non_utf8_file_is_rejected(tmp_path: Path) -> None:
    cfg_path = tmp_path / "latin1.toml"
    cfg_path.write_bytes(b'[script]\nsource_filter = "caf\xe9"\n')

    with pytest.raises(ConfigError, match="UTF-8"):
        load_config(str(cfg_path))


def test_sanitize_section_coerces_booleans() -> None:
    script_cfg = _sanitize_section({"show_crop_in_preview": 0}, "script", ScriptConfig)

    assert isinstance(script_cfg, ScriptConfig)
    assert script_cfg.show_crop_in_preview is False
    assert script_cfg.source_filter == "bs.VideoSource"


@dataclass
class _Flags:
    strict: bool = False
    label: str = ""


def test_sanitize_section_only_coerces_boolean_fields() -> None:
    flags = _sanitize_section({"strict": "1", "label": "1"}, "flags", _Flags)
    script_cfg = _sanitize_section({"source_filter": "0", "show_crop_in_preview": "true"}, "script", ScriptConfig)

    assert flags == _Flags(strict=True, label="1")
    assert script_cfg.source_filter == "0"
    assert script_cfg.show_crop_in_preview is True
    with pytest.raises(ConfigError, match="flags.strict"):
        _sanitize_section({"strict": "perhaps"}, "flags", _Flags)


def test_policy_names_map_onto_model_values() -> None:
    assert guessing_method("mics") is GuessingMethod.FROM_MICS
    assert third_n_match_policy("If Prettier") is UseThirdNMatch.IF_PRETTIER
    assert drop_duplicate_policy("uglier per section") is DropDuplicate.UGLIER_PER_SECTION
    assert pattern_flags(["cccnn", "ccccc"]) == Patterns.CCCNN | Patterns.CCCCC
    with pytest.raises(ConfigError):
        drop_duplicate_policy("none")
