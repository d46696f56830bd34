"""Pipeline: config models, context, step factory and orchestrator.

Import from the submodules (docflow.pipeline.orchestrator, .context, ...); this
package module stays empty because the steps import from it.
"""
