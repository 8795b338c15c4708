"""
Built-in processes shipped with the engine.

``echo`` returns its ``value`` input unchanged. The optional ``delay``
input makes it sleep in small steps while reporting progress, which is how
long-running work is expected to cooperate with dismissal.
"""

import time
from typing import Any, Dict

from .models import (
    Process,
    InputDescription,
    OutputDescription,
    JobControlOption,
)
from .worker import JobContext, WorkUnitRegistry


ECHO_PROCESS = Process(
    id="echo",
    title="Echo",
    description="Returns the 'value' input as the 'value' output.",
    version="1.0.0",
    keywords=["test", "echo"],
    jobControlOptions=[
        JobControlOption.SYNC_EXECUTE,
        JobControlOption.ASYNC_EXECUTE,
        JobControlOption.DISMISS
    ],
    inputs={
        "value": InputDescription(
            title="Value",
            description="Any JSON value",
            schema={}
        ),
        "delay": InputDescription(
            title="Delay",
            description="Seconds to wait before answering",
            schema={"type": "number", "minimum": 0, "maximum": 3600},
            minOccurs=0
        )
    },
    outputs={
        "value": OutputDescription(
            title="Value",
            description="The input value",
            schema={}
        )
    }
)

BUILTIN_PROCESSES = (ECHO_PROCESS,)

_DELAY_STEP_SECONDS = 0.1


def echo(context: JobContext) -> Dict[str, Any]:
    delay = float(context.inputs.get("delay") or 0)

    waited = 0.0
    while waited < delay:
        step = min(_DELAY_STEP_SECONDS, delay - waited)
        time.sleep(step)
        waited += step
        context.report_progress(int(100 * waited / delay))

    return {"value": context.inputs.get("value")}


def builtin_work_units() -> WorkUnitRegistry:
    registry = WorkUnitRegistry()
    registry.register("echo", echo)
    return registry
