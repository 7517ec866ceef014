import unittest

from app.services.compliance import (
    CONFORME,
    NAO_APLICAVEL,
    NAO_CONFORME,
    PARCIALMENTE_CONFORME,
    as_boolean,
    as_rating,
    classify_response,
    compliance_summary,
)


class ClassifyResponseTests(unittest.TestCase):
    def test_boolean_answers(self):
        self.assertEqual(classify_response("boolean", True), CONFORME)
        self.assertEqual(classify_response("boolean", False), NAO_CONFORME)
        self.assertEqual(classify_response("boolean", "sim"), CONFORME)
        self.assertEqual(classify_response("boolean", "Não"), NAO_CONFORME)
        self.assertIsNone(classify_response("boolean", None))
        self.assertIsNone(classify_response("boolean", "talvez"))

    def test_rating_thresholds(self):
        self.assertEqual(classify_response("rating", 5), CONFORME)
        self.assertEqual(classify_response("rating", 4), CONFORME)
        self.assertEqual(classify_response("rating", 3), PARCIALMENTE_CONFORME)
        self.assertEqual(classify_response("rating", "2"), NAO_CONFORME)
        self.assertEqual(classify_response("rating", 1), NAO_CONFORME)
        self.assertIsNone(classify_response("rating", "abc"))
        self.assertIsNone(classify_response("rating", float("nan")))

    def test_textual_lexicon_checks_negative_terms_first(self):
        self.assertEqual(classify_response("select", "Não conforme"), NAO_CONFORME)
        self.assertEqual(classify_response("radio", "nao-conforme"), NAO_CONFORME)
        self.assertEqual(classify_response("select", "Conforme"), CONFORME)
        self.assertEqual(classify_response("text", "N/A"), NAO_APLICAVEL)
        self.assertEqual(classify_response("multiselect", ["extintor", "inadequado"]), NAO_CONFORME)
        self.assertIsNone(classify_response("textarea", "observado no local"))

    def test_underscore_and_negated_conforme(self):
        self.assertEqual(classify_response("select", "nao_conforme"), NAO_CONFORME)
        self.assertEqual(classify_response("radio", "Não_Conforme"), NAO_CONFORME)
        self.assertIsNone(classify_response("text", "Não está conforme"))
        self.assertIsNone(classify_response("textarea", "nao ficou conforme o projeto"))
        self.assertEqual(classify_response("radio", "conforme"), CONFORME)

    def test_unclassifiable_field_types(self):
        self.assertIsNone(classify_response("number", 10))
        self.assertIsNone(classify_response("date", "2024-01-01"))
        self.assertIsNone(classify_response(None, True))

    def test_explicit_status_wins(self):
        self.assertEqual(classify_response("boolean", True, "nao_conforme"), NAO_CONFORME)
        self.assertEqual(classify_response("rating", 1, "non_compliant"), NAO_CONFORME)
        self.assertEqual(classify_response("rating", 1, "not_applicable"), NAO_APLICAVEL)

    def test_unknown_explicit_status_is_ignored(self):
        self.assertEqual(classify_response("rating", 5, "qualquer"), CONFORME)
        self.assertEqual(classify_response("boolean", False, "unanswered"), NAO_CONFORME)

    def test_classification_is_deterministic(self):
        first = classify_response("select", "não aplicável")
        second = classify_response("select", "não aplicável")
        self.assertEqual(first, second)
        self.assertEqual(first, NAO_APLICAVEL)


class CoercionTests(unittest.TestCase):
    def test_as_rating(self):
        self.assertEqual(as_rating("3,5"), 3.5)
        self.assertIsNone(as_rating(True))
        self.assertIsNone(as_rating({"value": 1}))
        self.assertIsNone(as_rating("inf"))

    def test_as_boolean(self):
        self.assertTrue(as_boolean("TRUE"))
        self.assertFalse(as_boolean("nao"))
        self.assertIsNone(as_boolean(0))


class ComplianceSummaryTests(unittest.TestCase):
    def test_percentage_ignores_not_applicable(self):
        summary = compliance_summary([CONFORME, CONFORME, NAO_CONFORME, NAO_APLICAVEL, None])
        self.assertEqual(summary["total_items"], 5)
        self.assertEqual(summary["applicable_items"], 4)
        self.assertEqual(summary["counts"]["nao_respondido"], 1)
        self.assertEqual(summary["compliance_percentage"], 50)

    def test_empty_inspection(self):
        summary = compliance_summary([])
        self.assertEqual(summary["total_items"], 0)
        self.assertEqual(summary["compliance_percentage"], 0)
