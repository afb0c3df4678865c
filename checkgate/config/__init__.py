# checkgate/config package
# YAML-backed configuration: the checkpoint checklist (checkpoints.yaml) and
# the runtime settings (gate.yaml). Both are cached and resettable for tests.
