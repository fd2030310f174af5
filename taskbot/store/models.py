"""Persistent record types — mirror the SQLite jobs, runs and executors tables."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

JobStatus = Literal["active", "paused", "completed", "failed", "archived"]
RunStatus = Literal["pending", "running", "approval_pending", "completed", "failed"]
ApprovalPolicy = Literal["auto", "approve_first", "approve_always"]
TriggerSource = Literal["scheduled", "condition", "manual", "system"]
RunSource = Literal["full_agent", "executor"]
ToolClass = Literal["browser", "local", "all"]

TERMINAL_RUN_STATUSES = ("completed", "failed")

RESULT_SUMMARY_MAX = 500
TRACE_OUTPUT_MAX = 200


class Job(BaseModel):
    """A user-defined automation."""

    job_id: str
    description: str
    trigger_type: Literal["one_time", "scheduled", "condition"]
    trigger_spec: str
    instructions: str
    status: JobStatus = "active"
    approval_policy: ApprovalPolicy = "auto"
    model: str | None = None
    max_iterations: int = 30
    token_budget: int = 50_000
    run_count: int = 0
    consecutive_failures: int = 0
    max_failures: int = 3
    last_error: str | None = None
    last_run_at: float | None = None
    next_run_at: float | None = None
    created_at: float
    updated_at: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class Run(BaseModel):
    """One execution attempt of a Job."""

    run_id: str
    job_id: str
    status: RunStatus = "pending"
    trigger_source: TriggerSource = "scheduled"
    source: RunSource | None = None
    executor_version: int | None = None
    started_at: float
    completed_at: float | None = None
    duration_ms: int | None = None
    result_summary: str | None = None
    result_detail: str | None = None
    tool_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class TraceStep(BaseModel):
    """One tool invocation observed during an agent run."""

    index: int
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    tool_output: str = ""  # truncated to TRACE_OUTPUT_MAX
    duration_ms: int = 0
    was_llm_dependent: bool = False


class CacheKey(BaseModel):
    """Structural identity of a goal (see executors.archetype)."""

    archetype: str
    primary_host: str | None = None
    tool_class: ToolClass = "all"


# ── Executor steps (discriminated on ``type``) ─────────────


class ToolStep(BaseModel):
    type: Literal["tool"] = "tool"
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    store_as: str | None = None


class LlmStep(BaseModel):
    type: Literal["llm"] = "llm"
    prompt_template: str
    store_as: str | None = None
    max_tokens: int = 500


class ResultStep(BaseModel):
    type: Literal["result"] = "result"
    template: str


ExecutorStep = Annotated[Union[ToolStep, LlmStep, ResultStep], Field(discriminator="type")]


class ExecutorValidation(BaseModel):
    expect_result: bool = True
    max_duration_ms: int = 300_000
    required_variables: list[str] = Field(default_factory=list)
    abort_on_empty_extract: bool = False


class ExecutorStats(BaseModel):
    total_steps: int = 0
    deterministic_steps: int = 0
    llm_steps: int = 0
    estimated_cost_per_run: float = 0.0


class Executor(BaseModel):
    """A compiled, replayable script derived from a successful agent run."""

    executor_id: str
    owner_key: str
    version: int = 0
    steps: list[ExecutorStep] = Field(default_factory=list)
    validation: ExecutorValidation = Field(default_factory=ExecutorValidation)
    stats: ExecutorStats = Field(default_factory=ExecutorStats)
    success_count: int = 0
    failure_count: int = 0
    cost_saved: float = 0.0
    last_used_at: float | None = None
    created_at: float
    superseded_at: float | None = None
    created_from_run_id: str | None = None

    @property
    def is_active(self) -> bool:
        return self.superseded_at is None
