DEFAULT_MAX_PARALLEL_NODES = 10
DEFAULT_STEP_TIMEOUT_SECONDS = 30.0

CONFIG_ENV_VAR = "PLAYENGINE_CONFIG"
DATABASE_URL_ENV_VARS = ("PLAYENGINE_DATABASE_URL", "DATABASE_URL")

# Step types that only route control flow and never call a behaviour brick.
CONTROL_STEP_TYPES = ("start", "end", "fork", "join")
PARALLEL_SPLIT_STEP_TYPE = "fork"
