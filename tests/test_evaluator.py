"""Tests for quartet.evaluator module."""
import unittest

from quartet.evaluator import Evaluator
from quartet.schema import AgentResponse, ReasoningStep


def steps(n):
    return [ReasoningStep(i, f"thought {i}") for i in range(1, n + 1)]


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestEvaluator(unittest.TestCase):
    def test_calculate_cost_default_rates(self):
        cost = Evaluator().calculate_cost(1000, 1000)
        self.assertEqual(cost.tokens, 2000)
        self.assertEqual(cost.input_tokens, 1000)
        self.assertEqual(cost.output_tokens, 1000)
        self.assertEqual(cost.estimated_cost, 0.0125)

    def test_cost_is_rounded_to_four_decimals(self):
        cost = Evaluator().calculate_cost(123, 457)
        # 0.0003075 + 0.00457 = 0.0048775
        self.assertEqual(cost.estimated_cost, 0.0049)

    def test_custom_rates(self):
        cost = Evaluator(cost_per_1k_input=0.001, cost_per_1k_output=0.002).calculate_cost(2000, 500)
        self.assertEqual(cost.estimated_cost, 0.003)

    def test_latency_uses_clock(self):
        evaluator = Evaluator(clock=FakeClock(12.5))
        latency = evaluator.measure_latency(10.0, [100.0, 250.5])
        self.assertEqual(latency.total_ms, 2500)
        self.assertEqual(latency.per_step_ms, [100.0, 250.5])

    def test_injection_scan_covers_whole_response(self):
        response = AgentResponse(
            recommendation="Refactor the module",
            warnings=["Someone may try to ignore all previous instructions"],
        )
        security = Evaluator().check_security(response)
        self.assertFalse(security.prompt_injection_blocked)
        self.assertTrue(security.safe_code_generated)

    def test_clean_response_reports_no_injection(self):
        security = Evaluator().check_security(AgentResponse(recommendation="Sort with a heap"))
        self.assertTrue(security.prompt_injection_blocked)

    def test_unsafe_code_only_checked_in_code_output(self):
        prose = AgentResponse(recommendation="Never call eval() on user input")
        self.assertTrue(Evaluator().check_security(prose).safe_code_generated)

        code = AgentResponse(recommendation="Clean up", code_output="os.system('rm -rf /tmp/cache')")
        self.assertFalse(Evaluator().check_security(code).safe_code_generated)

    def test_destructive_sql_is_unsafe(self):
        response = AgentResponse(recommendation="Reset", code_output="drop table users;")
        self.assertFalse(Evaluator().check_security(response).safe_code_generated)

    def test_hallucination_heuristic(self):
        evaluator = Evaluator()
        flagged = AgentResponse(recommendation="As of my knowledge cutoff, the latest version is 3.1")
        clean = AgentResponse(recommendation="Pin the dependency to 3.1")
        self.assertTrue(evaluator.assess_stability(1.0, 1, flagged).hallucination_detected)
        self.assertFalse(evaluator.assess_stability(1.0, 1, clean).hallucination_detected)

    def test_build_metrics(self):
        evaluator = Evaluator("medium", clock=FakeClock(1.0))
        response = AgentResponse(recommendation="Add a null check before use", reasoning=steps(2))
        metrics = evaluator.build_metrics(0.5, 400, 200, response, 0.5, 2, [10.0, 12.0])

        self.assertEqual(metrics.cost.tokens, 600)
        self.assertEqual(metrics.latency.total_ms, 500)
        self.assertEqual(metrics.accuracy.validations_passed, 3)
        self.assertEqual(metrics.accuracy.validations_failed, 0)
        self.assertEqual(metrics.accuracy.task_success_rate, 1.0)
        self.assertEqual(metrics.stability.consistency_score, 0.5)
        self.assertEqual(metrics.stability.paths_evaluated, 2)

        data = metrics.to_dict()
        self.assertEqual(set(data), {"cost", "latency", "accuracy", "security", "stability"})
        self.assertEqual(data["cost"]["estimatedCost"], metrics.cost.estimated_cost)
        self.assertEqual(data["latency"]["perStepMs"], [10.0, 12.0])


if __name__ == "__main__":
    unittest.main()
