"""Step type identifiers. Used by the step factory, the orchestrator's input counts and trace."""

FILTER = "filter"
CLASSIFY = "classify"
ENRICH = "enrich"
GENERATE = "generate"
CONTEXT_ENRICH = "context-enrich"
RULESET_REVIEW = "ruleset-review"
VALIDATE = "validate"
CONDENSE = "condense"

STEP_TYPES = [FILTER, CLASSIFY, ENRICH, GENERATE, CONTEXT_ENRICH, RULESET_REVIEW, VALIDATE, CONDENSE]

# Step types whose input is the proposal set rather than messages or threads.
PROPOSAL_STEP_TYPES = (RULESET_REVIEW, VALIDATE, CONDENSE)
THREAD_STEP_TYPES = (ENRICH, GENERATE, CONTEXT_ENRICH)
