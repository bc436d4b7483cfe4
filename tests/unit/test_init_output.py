from __future__ import annotations

from tfpilot.parsing.init_output import run_init
from tfpilot.schema import Severity


def _ui(message: str, *, type_: str = "init_output") -> dict:
    return {"@level": "info", "@message": message, "@module": "terraform.ui", "type": type_}


def test_init_phases_render_headers_and_glyphs(scripted, sink) -> None:
    scripted.add_json(
        "init",
        [
            {
                "@level": "info",
                "@message": "Terraform 1.5.4",
                "@module": "terraform.ui",
                "type": "version",
                "terraform": "1.5.4",
                "ui": "1.1",
            },
            _ui("Initializing modules..."),
            _ui("Downloading registry.terraform.io/terraform-aws-modules/vpc/aws 5.0.0 for vpc..."),
            _ui("- vpc in .terraform/modules/vpc"),
            _ui("Initializing the backend..."),
            _ui("Initializing provider plugins..."),
            _ui("- Reusing previous version of hashicorp/aws from the dependency lock file"),
            _ui("- Using previously-installed hashicorp/aws v5.17.0"),
        ],
    )

    status, meta = run_init(scripted.terraform, sink)

    assert status == 0
    assert meta.terraform_version == "1.5.4"
    assert meta.ui_version == "1.1"
    assert sink.headers == ["Initializing modules "]
    assert sink.glyphs == ["D", "."]
    assert "Initializing the backend " in sink.logs
    assert "Initializing provider plugins ..." in sink.logs
    assert "- [FROM-LOCK] hashicorp/aws" in sink.logs
    assert "- [USING] hashicorp/aws v5.17.0" in sink.logs
    assert meta.diagnostics == []


def test_init_passes_upgrade_and_reconfigure_flags(scripted, sink) -> None:
    scripted.add_json("init", [])

    run_init(scripted.terraform, sink, upgrade=True, reconfigure=True)

    assert scripted.calls[-1] == ["terraform", "init", "-input=false", "-upgrade", "-reconfigure", "-json"]


def test_lock_diagnostic_is_recorded_with_lock_info(scripted, sink) -> None:
    scripted.add_json(
        "init",
        [
            {
                "@level": "error",
                "@message": "Error: Error acquiring the state lock",
                "@module": "terraform.ui",
                "type": "diagnostic",
                "diagnostic": {
                    "severity": "error",
                    "summary": "Error acquiring the state lock",
                    "detail": "Lock Info:\n  ID:        abc-123\n  Operation: OperationTypeApply\n",
                },
            }
        ],
        exit_code=1,
    )

    status, meta = run_init(scripted.terraform, sink)

    assert status == 1
    assert meta.lock_info is not None
    assert meta.lock_info.lock_id == "abc-123"
    assert not meta.lock_info.is_plan_lock
    assert meta.diagnostics[0].printed is False
    assert sink.diagnostics == []
    assert "error: Error acquiring the state lock" in sink.logs


def test_other_diagnostics_are_printed_while_streaming(scripted, sink) -> None:
    scripted.add_json(
        "init",
        [
            {
                "@level": "error",
                "@message": "Error: Module not installed",
                "@module": "terraform.ui",
                "type": "diagnostic",
                "diagnostic": {"severity": "error", "summary": "Module not installed", "detail": "run init"},
            }
        ],
        exit_code=1,
    )

    _, meta = run_init(scripted.terraform, sink)

    assert [item.summary for item in sink.diagnostics] == ["Module not installed"]
    assert meta.errors[0].printed is True
    assert meta.errors[0].severity == Severity.ERROR


def test_reconfigure_hint_in_error_message_sets_flag(scripted, sink) -> None:
    scripted.add_json(
        "init",
        [
            {
                "@level": "error",
                "@message": 'Backend configuration changed. Run "terraform init -reconfigure".',
                "@module": "terraform.ui",
                "type": "log",
            }
        ],
        exit_code=1,
    )

    _, meta = run_init(scripted.terraform, sink)

    assert meta.needs_reconfigure is True


def test_wrapper_failure_summary_is_muted(scripted, sink) -> None:
    scripted.add(
        "init",
        stderr=[
            "time=t level=error msg=Terraform invocation failed in /work/app",
            "\t* [/work/app] exit status 1",
            "",
        ],
        exit_code=1,
    )

    _, meta = run_init(scripted.terraform, sink)

    assert meta.diagnostics == []
    assert sink.diagnostics == []


def test_sso_error_on_backend_sets_auth_flag(scripted, sink) -> None:
    scripted.add_json(
        "init",
        [
            _ui("Initializing the backend..."),
            _ui("Error when retrieving token from sso: Token has expired and refresh failed"),
        ],
        exit_code=1,
    )

    _, meta = run_init(scripted.terraform, sink)

    assert meta.needs_auth is True
    assert "authentication problem" in sink.logs
