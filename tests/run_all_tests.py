#!/usr/bin/env python3
"""
Test runner for Quick Math Duel.
Runs all unit and integration tests and prints a summary report.

Usage:
    python tests/run_all_tests.py            # everything
    python tests/run_all_tests.py engine     # one category
"""
import sys
import time
import unittest
from pathlib import Path

# Make the quick_math and tests packages importable from the repository root
sys.path.insert(0, str(Path(__file__).parent.parent))

TEST_CATEGORIES = {
    'generator': ['tests.test_question_generator'],
    'engine': ['tests.test_round_engine', 'tests.test_round_clock'],
    'data': ['tests.test_data_manager', 'tests.test_streak'],
    'config': ['tests.test_config_manager', 'tests.test_main'],
    'controller': ['tests.test_session_controller'],
    'bot': ['tests.test_bot_discord_integration'],
    'integration': ['tests.test_integration_comprehensive'],
}


def load_suite(module_names):
    """Load the given test modules into one suite."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()
    for module_name in module_names:
        try:
            suite.addTest(loader.loadTestsFromName(module_name))
            print(f"✓ Loaded tests from {module_name}")
        except Exception as e:
            print(f"✗ Failed to load {module_name}: {e}")
    return suite


def run_test_suite(module_names):
    """Run the test modules and print a summary report."""
    print("=" * 70)
    print("Quick Math Duel - Test Suite")
    print("=" * 70)

    suite = load_suite(module_names)

    print("\n" + "=" * 70)
    print("Running Tests...")
    print("=" * 70)

    runner = unittest.TextTestRunner(verbosity=2, stream=sys.stdout, buffer=True)
    started = time.perf_counter()
    result = runner.run(suite)
    elapsed = time.perf_counter() - started

    broken = len(result.failures) + len(result.errors)
    ok = result.testsRun - broken - len(result.skipped)

    print("\n" + "=" * 70)
    print(f"{result.testsRun} tests in {elapsed:.2f}s: {ok} ok, {len(result.failures)} failed, "
          f"{len(result.errors)} errors, {len(result.skipped)} skipped")
    if result.testsRun:
        print(f"Pass rate {ok / result.testsRun:.1%}")
    print("=" * 70)

    for title, entries in (("FAILURES", result.failures), ("ERRORS", result.errors)):
        if not entries:
            continue
        print("\n" + "-" * 50)
        print(f"{title}:")
        print("-" * 50)
        for test, traceback in entries:
            print(f"\n{test}:")
            print(traceback)

    return broken == 0


if __name__ == '__main__':
    if len(sys.argv) > 1:
        category = sys.argv[1]
        if category not in TEST_CATEGORIES:
            print(f"Unknown category: {category}")
            print(f"Available categories: {', '.join(TEST_CATEGORIES)}")
            sys.exit(1)
        modules = TEST_CATEGORIES[category]
    else:
        modules = [name for names in TEST_CATEGORIES.values() for name in names]

    sys.exit(0 if run_test_suite(modules) else 1)
