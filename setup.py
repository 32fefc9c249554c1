import sys
import traceback
from setuptools import find_packages, setup

def get_packages():
    """Get package list with debug information."""
    try:
        packages = find_packages(include=["sidecar", "sidecar.*"])
        print(f"Found packages: {packages}")
        return packages
    except Exception as e:
        print(f"Error finding packages: {e}")
        print(f"Traceback:\n{traceback.format_exc()}")
        return []

try:
    print(f"Python version: {sys.version}")

    setup(
        name="mcp-sidecar",
        version="0.1.0",
        description="Scan, route and execute mcp:<server>:<tool>(args) commands against a local project",
        packages=get_packages(),
        package_dir={"": "."},
        include_package_data=True,
        package_data={"sidecar": ["config.yml"]},
        install_requires=[
            # Web Framework
            "fastapi>=0.100.0",
            "uvicorn>=0.15.0",
            # Core Dependencies
            "pydantic>=2.0",
            "python-dotenv>=0.19.0",
            "pyyaml>=6.0",
            "httpx>=0.24.0",
            # MCP
            "mcp>=1.8.0,<2",
            # Utils
            "rich>=10.0.0",
            "typer>=0.9.0",
            "pyperclip>=1.8.0",
        ],
        extras_require={
            "test": [
                "pytest>=7.0.0",
                "pytest-asyncio>=0.21.0",
            ],
        },
        python_requires=">=3.10",
        entry_points={
            "console_scripts": [
                "sidecar=sidecar.cli:app",
                "sidecar-web=sidecar.web.server:main",
            ],
        },
    )
except Exception as e:
    print(f"Setup failed: {e}")
    print(f"Traceback:\n{traceback.format_exc()}")
    raise
