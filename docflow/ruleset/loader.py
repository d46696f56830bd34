"""Loading a tenant's ruleset through the persistence port."""
import logging

from docflow.persistence.interface import PersistencePort
from docflow.ruleset.parser import ParsedRuleset, create_empty_ruleset, parse_ruleset

logger = logging.getLogger(__name__)


def load_tenant_ruleset(persistence: PersistencePort | None, tenant_id: str) -> ParsedRuleset:
    """Most recently updated ruleset for the tenant. Missing store, missing row or read failure: empty ruleset."""
    if persistence is None:
        return create_empty_ruleset()
    try:
        content = persistence.get_latest_ruleset(tenant_id)
    except Exception as e:
        logger.warning("[ruleset] failed to load ruleset for %s: %s", tenant_id, e)
        return create_empty_ruleset()
    if not content:
        logger.debug("[ruleset] no ruleset for %s", tenant_id)
        return create_empty_ruleset()
    return parse_ruleset(content)
