# Binds one name, then fails.

BOUND_BEFORE_FAILURE = True

raise RuntimeError("broken on purpose")
