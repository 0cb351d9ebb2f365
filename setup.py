"""Setup configuration for modgate."""

from setuptools import setup, find_packages

setup(
    name="modgate",
    version="0.1.0",
    description="Moderation orchestration layer with a Discord bot front end",
    packages=find_packages(where="src", include=["modgate", "modgate.*"]),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.6",
        "aiosqlite>=0.20",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
        "Pillow>=10.0",
        "httpx>=0.27",
        "av>=12.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "modgate=modgate.main:main",
        ],
    },
)
