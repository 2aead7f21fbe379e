import logging
from typing import List, Optional

from services.beliefcore.models import Belief, BeliefDomain, SearchOptions
from services.beliefcore.repository import BeliefRepository

logger = logging.getLogger(__name__)


class ContradictionTracker:
    """
    Supporting / contradicting evidence counters.
    Observe-only: reaching the review threshold never changes confidence
    or invalidates anything; it is exposed for an external decision.
    """

    def __init__(self, repository: BeliefRepository, threshold: Optional[int] = None):
        self.repository = repository
        self.threshold = threshold if threshold is not None else repository.settings.contradiction_threshold

    def is_flagged(self, belief: Belief) -> bool:
        return belief.contradicting_count >= self.threshold

    def reinforce(self, belief_id: str) -> bool:
        return self.repository.increment_supporting(belief_id)

    def contradict(self, belief_id: str) -> bool:
        if not self.repository.increment_contradicting(belief_id):
            return False

        belief = self.repository.get_by_id(belief_id)
        if belief is not None and belief.contradicting_count == self.threshold:
            logger.warning(
                "Belief %s reached %d contradictions; flagged for review",
                belief_id, belief.contradicting_count,
            )
        return True

    def flagged(self, domain: Optional[BeliefDomain] = None) -> List[Belief]:
        beliefs = self.repository.get_active(SearchOptions(domain=domain))
        out = [b for b in beliefs if self.is_flagged(b)]
        out.sort(key=lambda b: b.contradicting_count, reverse=True)
        return out
