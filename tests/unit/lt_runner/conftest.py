from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from lt_runner.models.context import JobContext

FAKE_TOOL = """#!{python}
import signal
import sys
import time

args = sys.argv[1:]
opts = {{}}
props = {{}}
i = 0
while i < len(args):
    arg = args[i]
    if arg in ("-t", "-l", "-j"):
        opts[arg] = args[i + 1]
        i += 2
        continue
    if arg.startswith("-J"):
        key, _, value = arg[2:].partition("=")
        props[key] = value
    i += 1

mode = props.get("mode", "ok")
if mode == "ignore_term":
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("starting threads=" + props.get("threads", "?"), flush=True)
sys.stderr.write("warming up\\n")
sys.stderr.flush()
if mode in ("ignore_term", "sleep"):
    print("ready", flush=True)
    while True:
        time.sleep(0.1)

with open(opts["-l"], "w") as fh:
    fh.write("timeStamp,elapsed,label,responseCode,success,bytes,grpThreads,allThreads\\n")
    fh.write("1000,100,home,200,true,10,1,1\\n")
    fh.write("1100,300,login,500,false,10,1,1\\n")
with open(opts["-j"], "w") as fh:
    fh.write("tool log\\n")
sys.stdout.write("partial line without newline")
sys.exit(int(props.get("exit", "0")))
"""


@pytest.fixture
def fake_tool(tmp_path: Path) -> Path:
    """An executable stand-in for the load-test tool."""
    path = tmp_path / "bin" / "fake-jmeter"
    path.parent.mkdir()
    path.write_text(FAKE_TOOL.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_context(tmp_path: Path):
    def _make(job_id: int = 1, duration: int = 60, **properties: str) -> JobContext:
        script = tmp_path / "plan.jmx"
        if not script.exists():
            script.write_text("<jmeterTestPlan/>")
        return JobContext(
            job_id=job_id,
            script_path=script,
            result_path=tmp_path / "results" / f"test_{job_id}.csv",
            log_path=tmp_path / "logs" / f"test_{job_id}.log",
            concurrency=5,
            duration_seconds=duration,
            ramp_up_seconds=10,
            custom_properties=dict(properties),
        )

    return _make
