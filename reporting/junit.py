"""
JUnit Reporter - JUnit XML report for CI systems (Jenkins, GitHub Actions, GitLab CI).
JUnit 报告器 —— 供 CI 系统使用的 JUnit XML 报告。

One <testsuite> per run, one <testcase> per subtask. Setup and teardown steps
are added as testcases with classname "<suite>.setup" / "<suite>.teardown".
每次运行一个 <testsuite>，每个 subtask 一个 <testcase>；setup/teardown 步骤也作为 testcase 输出。
  - COMPLETED         -> plain testcase
  - FAILED            -> <failure>
  - BLOCKED / PENDING -> <skipped>
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path

from schema import NodeOutcome, RunResult, TaskStatus


class JUnitReporter:
    name = "junit"
    file_extension = "xml"

    def generate(self, result: RunResult) -> str:
        suite_name = result.name or "run"
        cases = (
            [(o, f"{suite_name}.setup") for o in result.setup]
            + [(o, suite_name) for o in result.outcomes]
            + [(o, f"{suite_name}.teardown") for o in result.teardown]
        )
        failures = sum(1 for o, _ in cases if o.status == TaskStatus.FAILED)
        passed = sum(1 for o, _ in cases if o.status == TaskStatus.COMPLETED)
        suite = ET.Element("testsuite", {
            "name": suite_name,
            "tests": str(len(cases)),
            "failures": str(failures),
            "skipped": str(len(cases) - passed - failures),
            "time": f"{result.duration:.3f}",
            "timestamp": datetime.fromtimestamp(result.started_at, tz=timezone.utc).isoformat(),
        })
        for outcome, classname in cases:
            suite.append(self._testcase(outcome, classname))

        ET.indent(suite)
        body = ET.tostring(suite, encoding="unicode")
        return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'

    def write_to_file(self, result: RunResult, output_path: str | Path) -> Path:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.generate(result), encoding="utf-8")
        return path

    @staticmethod
    def _testcase(outcome: NodeOutcome, classname: str) -> ET.Element:
        duration = outcome.result.duration if outcome.result and outcome.result.duration else 0.0
        case = ET.Element("testcase", {
            "name": outcome.title or str(outcome.id),
            "classname": classname,
            "time": f"{duration:.3f}",
        })
        error = outcome.result.error if outcome.result else None

        if outcome.status == TaskStatus.FAILED:
            failure = ET.SubElement(case, "failure", {
                "type": "StepFailure",
                "message": error or "Test failed",
            })
            failure.text = error or "Test failed"
        elif outcome.status in (TaskStatus.BLOCKED, TaskStatus.PENDING):
            skipped = ET.SubElement(case, "skipped", {"message": error or "Test skipped"})
            skipped.text = error or "Test skipped"

        if outcome.result and outcome.result.output:
            system_out = ET.SubElement(case, "system-out")
            system_out.text = outcome.result.output
        return case
