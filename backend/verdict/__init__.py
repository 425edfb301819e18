# Verdict Determination Module
# Engines live in their own modules (rule_engine, conflicts, categories,
# freshness); only the shared vocabulary is re-exported here.
from .constants import Verdict, VERDICT_MAP, RuleAction, ConditionType, worst_verdict

__all__ = ['Verdict', 'VERDICT_MAP', 'RuleAction', 'ConditionType', 'worst_verdict']
