# tests/test_sponsor_resolver.py
"""
Tests for orphan sponsor suggestions.

Run:
    pytest tests/test_sponsor_resolver.py -v
"""
from referral_system.services.sponsor_resolver import Confidence, analyzeOrphans, suggestSponsor


class TestSuggestSponsor:
    """Confidence levels and cycle refusal."""

    def test_invitation_code_match_is_high(self, tree_nodes, make_node):
        orphan = make_node("O", invitationCode="REF-B")

        suggestion = suggestSponsor(orphan, tree_nodes + [orphan])

        assert suggestion.confidence == Confidence.HIGH
        assert suggestion.candidateId == "B"
        assert "REF-B" in suggestion.reason

    def test_no_invitation_code_is_low(self, tree_nodes, make_node):
        orphan = make_node("O")

        suggestion = suggestSponsor(orphan, tree_nodes + [orphan])

        assert suggestion.confidence == Confidence.LOW
        assert suggestion.candidate is None
        assert suggestion.reason == "Orphan has no invitation code"

    def test_unknown_code_is_low(self, tree_nodes, make_node):
        orphan = make_node("O", invitationCode="NOPE")

        suggestion = suggestSponsor(orphan, tree_nodes + [orphan])

        assert suggestion.confidence == Confidence.LOW
        assert suggestion.candidate is None
        assert "does not match" in suggestion.reason

    def test_team_claim_is_medium(self, tree_nodes):
        orphan = tree_nodes[4]  # D, still listed by B
        orphan.sponsorId = None
        orphan.invitationCode = None

        suggestion = suggestSponsor(orphan, tree_nodes)

        assert suggestion.confidence == Confidence.MEDIUM
        assert suggestion.candidateId == "B"

    def test_own_code_is_not_a_match(self, make_node):
        orphan = make_node("O", referralCode="SELF", invitationCode="SELF")

        assert suggestSponsor(orphan, [orphan]).candidate is None

    def test_candidate_in_downline_rejected(self, make_node):
        orphan = make_node("O", team=["K"], invitationCode="REF-K")
        child = make_node("K", sponsorId="O")

        suggestion = suggestSponsor(orphan, [orphan, child])

        assert suggestion.candidate is None
        assert suggestion.confidence == Confidence.LOW
        assert "cycle" in suggestion.reason

    def test_children_flagged_without_changing_confidence(self, tree_nodes, make_node):
        orphan = make_node("O", team=["K"], invitationCode="REF-C")
        child = make_node("K", sponsorId="O")

        suggestion = suggestSponsor(orphan, tree_nodes + [orphan, child])

        assert suggestion.hasChildren is True
        assert suggestion.childrenCount == 1
        assert suggestion.confidence == Confidence.HIGH


class TestAnalyzeOrphans:

    def test_children_first_then_confidence(self, tree_nodes, make_node):
        nodes = tree_nodes + [
            make_node("lonely-low"),
            make_node("lonely-high", invitationCode="REF-A"),
            make_node("parent-low", team=["K"]),
            make_node("K", sponsorId="parent-low"),
        ]

        suggestions = analyzeOrphans(nodes, ["001"])

        assert [s.orphan.id for s in suggestions] == ["parent-low", "lonely-high", "lonely-low"]

    def test_roots_and_admins_excluded(self, tree_nodes, make_node):
        nodes = tree_nodes + [make_node("adm", isAdmin=True)]

        assert analyzeOrphans(nodes, ["001"]) == []

    def test_no_writes(self, tree_nodes, make_node):
        orphan = make_node("O", invitationCode="REF-A")
        before = [n.copy() for n in tree_nodes]

        analyzeOrphans(tree_nodes + [orphan], ["001"])

        assert tree_nodes == before
        assert orphan.sponsorId is None
