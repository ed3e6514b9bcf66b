"""
Validate project setup: Python version, dependencies, GEMINI_API_KEY, chat store URL.
"""

import os
import sys

from dotenv import load_dotenv


def check_setup():
    """Check if the project is set up correctly (Gemini-only)."""
    print("Checking project setup...\n")
    issues = []
    notes = []

    if sys.version_info < (3, 9):
        issues.append("Python 3.9+ required (current: {}.{})".format(
            sys.version_info.major, sys.version_info.minor))
    else:
        print("✓ Python {}.{}.{}".format(
            sys.version_info.major, sys.version_info.minor, sys.version_info.micro))

    required = ["pydantic", "rich", "dotenv", "httpx", "langchain_google_genai", "langchain_core"]
    for name in required:
        try:
            __import__(name)
            print("✓ {} installed".format(name))
        except ImportError:
            issues.append("Missing package: {}".format(name))

    for name in ["sounddevice", "numpy"]:
        try:
            __import__(name)
            print("✓ {} installed (voice input)".format(name))
        except ImportError:
            notes.append("{} not installed; voice input disabled (pip install '.[audio]')".format(name))

    load_dotenv()
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if api_key:
        print("✓ GEMINI_API_KEY or GOOGLE_API_KEY found")
    else:
        issues.append("Set GEMINI_API_KEY (or GOOGLE_API_KEY) in .env")

    base_url = os.getenv("TURNCHAT_API_BASE_URL")
    if base_url:
        print("✓ TURNCHAT_API_BASE_URL = {}".format(base_url))
    else:
        notes.append("TURNCHAT_API_BASE_URL not set; using http://localhost:3000")

    for n in notes:
        print("• {}".format(n))

    print("\n" + "=" * 50)
    if issues:
        print("❌ Setup issues:")
        for i in issues:
            print("  • {}".format(i))
        print("\nFix: pip install -e . ; set GEMINI_API_KEY in .env")
        return False
    print("✓ Setup OK. Run: python demos/demo_cli.py --chat <conversation id>")
    return True


if __name__ == "__main__":
    success = check_setup()
    sys.exit(0 if success else 1)
