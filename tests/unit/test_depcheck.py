from __future__ import annotations

import subprocess
import sys
from pathlib import Path

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "tools" / "depcheck.py"


def _run(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        capture_output=True,
        text=True,
        check=False,
    )


def test_depcheck_fails_on_forbidden_import(tmp_path: Path) -> None:
    domain_dir = tmp_path / "domain"
    domain_dir.mkdir(parents=True, exist_ok=True)

    violating_file = domain_dir / "model.py"
    violating_file.write_text("import sqlalchemy\n", encoding="utf-8")

    result = _run("--path", str(domain_dir))

    combined_output = f"{result.stdout}\n{result.stderr}"
    assert result.returncode != 0
    assert "sqlalchemy" in combined_output
    assert str(violating_file) in combined_output


def test_depcheck_application_layer_may_not_import_infrastructure(tmp_path: Path) -> None:
    application_dir = tmp_path / "application"
    application_dir.mkdir(parents=True, exist_ok=True)
    (application_dir / "ok.py").write_text("import pydantic\n", encoding="utf-8")
    violating_file = application_dir / "use_case.py"
    violating_file.write_text(
        "from kds.infrastructure.db.session import get_engine\n",
        encoding="utf-8",
    )

    result = _run("--layer", "application", "--path", str(application_dir))

    assert result.returncode != 0
    assert f"{violating_file}:1 -> kds.infrastructure.db.session" in result.stdout
    assert "pydantic" not in result.stdout


def test_depcheck_passes_on_source_tree() -> None:
    result = _run()

    assert result.returncode == 0, result.stdout
    assert "depcheck passed" in result.stdout


def test_depcheck_infrastructure_may_not_import_api_layer(tmp_path: Path) -> None:
    infrastructure_dir = tmp_path / "infrastructure"
    infrastructure_dir.mkdir(parents=True, exist_ok=True)
    (infrastructure_dir / "ok.py").write_text(
        "from kds.application.use_cases.context import get_request_id\n",
        encoding="utf-8",
    )
    violating_file = infrastructure_dir / "publisher.py"
    violating_file.write_text(
        "from kds.api.middleware.request_id import REQUEST_ID_HEADER\n",
        encoding="utf-8",
    )

    result = _run("--layer", "infrastructure", "--path", str(infrastructure_dir))

    assert result.returncode != 0
    assert f"{violating_file}:1 -> kds.api.middleware.request_id" in result.stdout
    assert "kds.application" not in result.stdout
