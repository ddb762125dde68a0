"""Tests for quartet.personas module."""
import unittest

from quartet.errors import ConfigurationError, ErrorCode
from quartet.personas import (
    PersonaType,
    design,
    get_persona,
    implement,
    list_personas,
    meta_think,
    write_tests,
)


class TestPersonaRegistry(unittest.TestCase):
    def test_four_personas(self):
        keys = [persona.key.value for persona in list_personas()]
        self.assertEqual(keys, ["architect", "mechanic", "code_ninja", "philosopher"])

    def test_names_lead_system_prompts(self):
        for persona in list_personas():
            self.assertTrue(persona.system_prompt.startswith(f"You are {persona.name}"))

    def test_aliases(self):
        self.assertIs(PersonaType.parse("codeNinja"), PersonaType.CODE_NINJA)
        self.assertIs(PersonaType.parse("code-ninja"), PersonaType.CODE_NINJA)
        self.assertIs(PersonaType.parse(" Architect "), PersonaType.ARCHITECT)
        self.assertEqual(get_persona("MECHANIC").name, "The Mechanic")

    def test_unknown_persona(self):
        with self.assertRaises(ConfigurationError) as ctx:
            get_persona("oracle")
        self.assertEqual(ctx.exception.code, ErrorCode.AGENT_NOT_FOUND)
        self.assertIn("architect, mechanic, code_ninja, philosopher", ctx.exception.message)

    def test_helper_sets(self):
        self.assertEqual(set(get_persona("architect").helpers), {"design", "evaluate", "decompose"})
        self.assertEqual(set(get_persona("mechanic").helpers), {"diagnose", "fix", "optimize"})
        self.assertEqual(set(get_persona("code_ninja").helpers), {"implement", "refactor", "test"})
        self.assertEqual(
            set(get_persona("philosopher").helpers),
            {"evaluate", "identify_biases", "map_opportunities", "meta_think"},
        )

    def test_unknown_helper(self):
        with self.assertRaises(ConfigurationError):
            get_persona("architect").build_prompt("diagnose", "x")


class TestHelperPrompts(unittest.TestCase):
    def test_design_with_constraints(self):
        self.assertEqual(
            design("a rate limiter", ["Redis only", "p99 < 5ms"]),
            "Design a system architecture for: a rate limiter\n\n"
            "Constraints to consider:\n- Redis only\n- p99 < 5ms",
        )

    def test_design_without_constraints(self):
        self.assertEqual(design("a queue"), "Design a system architecture for: a queue")

    def test_implement(self):
        self.assertTrue(implement("login", ["Use bcrypt"]).endswith("Technical constraints:\n- Use bcrypt"))

    def test_default_test_framework(self):
        self.assertIn("using pytest", write_tests("def f(): pass"))
        self.assertIn("using unittest", write_tests("def f(): pass", framework="unittest"))

    def test_meta_think_numbers_outputs(self):
        prompt = meta_think(["first", "second"])
        self.assertIn("Agent Output 1:\nfirst", prompt)
        self.assertIn("---\n\nAgent Output 2:\nsecond", prompt)

    def test_build_prompt_passes_arguments(self):
        prompt = get_persona("mechanic").build_prompt("optimize", "for x in y: pass", metric="memory")
        self.assertTrue(prompt.startswith("Optimize the following code for memory"))


if __name__ == "__main__":
    unittest.main()
