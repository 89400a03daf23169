import json
from pathlib import Path

from mockup_engine import cli

from conftest import SPEC_TEXT


def _write_config(tmp_path: Path) -> str:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "run:",
                f"  out_dir: '{(tmp_path / 'runs').as_posix()}'",
                "  default_variants: 1",
                "  max_retries: 1",
                "  retry:",
                "    min_wait_seconds: 0",
                "    max_wait_seconds: 0",
                "models:",
                "  default: offline",
                "  aliases:",
                "    offline: [local:placeholder]",
                "critique:",
                "  model: local:placeholder",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return str(config_path)


def _write_spec(tmp_path: Path) -> str:
    spec_path = tmp_path / "spec.md"
    spec_path.write_text(SPEC_TEXT, encoding="utf-8")
    return str(spec_path)


def test_cli_generate_dry_run_prints_plan(tmp_path, capsys):
    config_path = _write_config(tmp_path)
    spec_path = _write_spec(tmp_path)

    rc = cli.main(["--config-path", config_path, "generate", "--spec", spec_path, "--variants", "2", "--dry-run"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "[dry-run] generate plan: 4 unit(s)" in out
    assert not list((tmp_path / "runs").glob("*/generate/manifest.json"))


def test_cli_generate_critique_iterate_offline(tmp_path, capsys):
    config_path = _write_config(tmp_path)
    spec_path = _write_spec(tmp_path)
    runs = tmp_path / "runs"

    rc = cli.main(["--config-path", config_path, "generate", "--spec", spec_path, "--run-id", "gen"])
    assert rc == 0
    assert "Generation complete: 2/2 images" in capsys.readouterr().out

    manifest = json.loads((runs / "gen" / "generate" / "manifest.json").read_text(encoding="utf-8"))
    assert manifest["successfulImages"] == 2
    assert (runs / "gen" / "input" / "spec.md").exists()

    rc = cli.main(["--config-path", config_path, "critique", "--from", str(runs / "gen"), "--run-id", "crit"])
    assert rc == 0
    assert "Critique complete: 2/2 images scored" in capsys.readouterr().out
    assert (runs / "crit" / "critique" / "summary.md").exists()

    rc = cli.main(
        ["--config-path", config_path, "iterate", "--origin", str(runs / "crit"), "--top-k", "1", "--run-id", "rev"]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "Passes completed: 1/1" in out
    assert "Successful revisions: 1" in out


def test_cli_reports_failures_with_nonzero_exit(tmp_path, capsys):
    config_path = _write_config(tmp_path)

    rc = cli.main(["--config-path", config_path, "generate", "--spec", str(tmp_path / "missing.md")])
    assert rc == 1
    assert "generate failed: Spec file not found" in capsys.readouterr().err


def test_cli_models_lists_aliases_and_credentials(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    rc = cli.main(["--config-path", _write_config(tmp_path), "models"])
    assert rc == 0

    out = capsys.readouterr().out
    assert "offline: local:placeholder" in out
    assert "local: no credentials required" in out
    assert "openai: OPENAI_API_KEY missing" in out


def test_cli_styles_lists_catalog(tmp_path, capsys):
    styles_path = Path(__file__).resolve().parents[1] / "styles" / "styles.md"
    rc = cli.main(["--config-path", _write_config(tmp_path), "styles", "--path", str(styles_path)])
    assert rc == 0
    out = capsys.readouterr().out
    assert "Styles (6):" in out
    assert "Brutalist: Raw, high-contrast typography" in out


def test_cli_init_then_dry_run_pipeline(tmp_path, capsys, monkeypatch):
    monkeypatch.chdir(tmp_path)

    assert cli.main(["init"]) == 0
    assert (tmp_path / "config" / "config.yaml").exists()
    assert (tmp_path / "specs" / "parking-app.md").exists()
    assert "runs/" in (tmp_path / ".gitignore").read_text(encoding="utf-8")
    capsys.readouterr()

    rc = cli.main(
        [
            "--config-path",
            "config/config.yaml",
            "run",
            "--pipeline",
            "pipelines/best-effort.json",
            "--run-id",
            "plan",
            "--dry-run",
        ]
    )
    assert rc == 0
    out = capsys.readouterr().out
    assert "Pipeline 'best-effort' complete" in out
    assert "[dry-run] step generate-pass-1: generate plan: 8 unit(s)" in out
    assert "[dry-run] step critique-pass-1:" in out
