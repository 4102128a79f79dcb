from .effects import CreateTask, Noop, UpdateEntity, apply_effects  # noqa: F401
from .jobs import JOBS, Job, RuleRun, run_job, run_rule  # noqa: F401
from .rules import RULES, SMART_RULES, AutomationConfig  # noqa: F401
from .store import Store  # noqa: F401
