#!/usr/bin/env python3
"""Test runner script for PatchScope.

Wraps pytest with the common selections used during development and CI.
"""
import os
import sys
import subprocess
import argparse
import time
from pathlib import Path
from typing import List, Optional

COVERAGE_TARGET = "--cov=patchscope"


def run_command(cmd: List[str], cwd: Optional[Path] = None) -> int:
    """Run a command and return the exit code."""
    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=cwd)
    return result.returncode


def pytest_command(*args: str, verbose: bool = True) -> List[str]:
    cmd = [sys.executable, "-m", "pytest", *args]
    if verbose:
        cmd.append("-v")
    return cmd


def run_unit_tests(coverage: bool = True, verbose: bool = True) -> int:
    """Run unit tests."""
    cmd = pytest_command("tests/unit/", verbose=verbose)
    if coverage:
        cmd.extend([COVERAGE_TARGET, "--cov-report=term-missing"])

    print("Running unit tests...")
    return run_command(cmd)


def run_security_tests(verbose: bool = True) -> int:
    """Run log redaction and other security tests."""
    print("Running security tests...")
    return run_command(pytest_command("tests/security/", "-m", "security", verbose=verbose))


def run_integration_tests(verbose: bool = True) -> int:
    """Run tests that use real threads and timers."""
    print("Running integration tests...")
    return run_command(pytest_command("-m", "integration", verbose=verbose))


def run_all_tests(coverage: bool = True, verbose: bool = True) -> int:
    """Run all tests."""
    cmd = pytest_command(verbose=verbose)
    if coverage:
        cmd.extend([
            COVERAGE_TARGET,
            "--cov-report=html:htmlcov",
            "--cov-report=term-missing",
        ])

    print("Running all tests...")
    return run_command(cmd)


def run_quick_tests() -> int:
    """Run a quick subset of tests for development."""
    print("Running quick test suite...")
    cmd = pytest_command(
        "tests/unit/",
        "-m", "not integration",
        "-x",  # Stop on first failure
        "--tb=short",
        "-q",
        verbose=False,
    )
    return run_command(cmd)


def run_ci_tests() -> int:
    """Run tests suitable for CI/CD pipeline."""
    print("Running CI test suite...")
    os.environ["CI"] = "true"

    cmd = pytest_command(
        COVERAGE_TARGET,
        "--cov-report=xml:coverage.xml",
        "--cov-report=term",
        "--cov-fail-under=80",
        "--junit-xml=test-results.xml",
        "--tb=short",
        verbose=False,
    )
    return run_command(cmd)


def check_test_environment() -> bool:
    """Check if the test environment is properly set up."""
    print("Checking test environment...")

    required_packages = {
        "pytest": "pytest",
        "pytest-cov": "pytest_cov",
        "numpy": "numpy",
        "opencv-python": "cv2",
        "Pillow": "PIL",
        "requests": "requests",
    }

    missing_packages = []
    for package, module in required_packages.items():
        try:
            __import__(module)
            print(f"✓ {package} available")
        except ImportError:
            print(f"✗ {package} not available")
            missing_packages.append(package)

    if missing_packages:
        print(f"\nMissing packages: {', '.join(missing_packages)}")
        print("Install with: pip install -e .[test]")
        return False

    project_root = Path(__file__).parent
    for dir_path in ("tests/unit", "tests/security"):
        if (project_root / dir_path).exists():
            print(f"✓ {dir_path} directory exists")
        else:
            print(f"✗ {dir_path} directory missing")
            return False

    print("✓ Test environment ready")
    return True


def main():
    """Main test runner function."""
    parser = argparse.ArgumentParser(description="Test runner for PatchScope")

    parser.add_argument(
        "test_type",
        choices=["unit", "security", "integration", "all", "quick", "ci", "check"],
        help="Type of tests to run"
    )
    parser.add_argument("--no-coverage", action="store_true", help="Disable coverage reporting")
    parser.add_argument("--quiet", action="store_true", help="Quiet output")

    args = parser.parse_args()

    if args.test_type == "check":
        return 0 if check_test_environment() else 1

    project_root = Path(__file__).parent
    os.chdir(project_root)

    start_time = time.time()

    try:
        if args.test_type == "unit":
            result = run_unit_tests(coverage=not args.no_coverage, verbose=not args.quiet)
        elif args.test_type == "security":
            result = run_security_tests(verbose=not args.quiet)
        elif args.test_type == "integration":
            result = run_integration_tests(verbose=not args.quiet)
        elif args.test_type == "all":
            result = run_all_tests(coverage=not args.no_coverage, verbose=not args.quiet)
        elif args.test_type == "quick":
            result = run_quick_tests()
        else:
            result = run_ci_tests()

        duration = time.time() - start_time
        print(f"\nTest execution completed in {duration:.2f} seconds")

        if result == 0:
            print("✓ All tests passed")
        else:
            print("✗ Some tests failed")

        return result

    except KeyboardInterrupt:
        print("\n\nTest execution interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
