from setuptools import setup, find_packages

setup(
    name="interview-live",
    version="0.1.0",
    description="Real-time AI interview session core: live connection, media capture and transcripts",
    author="",
    python_requires=">=3.10",
    packages=find_packages(include=["interview_live", "interview_live.*"]),
    install_requires=[
        "pyaudio>=0.2.11",
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "opencv-python>=4.5.0",
        "google-auth[requests]>=2.10.0",
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "interview-live=interview_live.main:main",
        ],
    },
)
