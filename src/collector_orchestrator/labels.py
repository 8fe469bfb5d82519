"""Label keys carried by every cluster object this process manages."""

LABEL_PREFIX = "collector-orchestrator"

# Marker: set to "true" on everything we own
LABEL_COLLECTOR = f"{LABEL_PREFIX}/collector"
# Identity of a single-source workload
LABEL_DIGEST = f"{LABEL_PREFIX}/collector-digest"
# Identity of a grouping (config map and its paired workload)
LABEL_GROUPING = f"{LABEL_PREFIX}/grouping-uid"
LABEL_SOURCE_TYPE = f"{LABEL_PREFIX}/source-type"

MARKER_SELECTOR = f"{LABEL_COLLECTOR}=true"
GROUPING_SELECTOR = f"{MARKER_SELECTOR},{LABEL_GROUPING}"
DIGEST_SELECTOR = f"{MARKER_SELECTOR},{LABEL_DIGEST}"
