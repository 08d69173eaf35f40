from setuptools import setup, find_namespace_packages

# Read the content of your README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="scanflow",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["scanflow*"], exclude=["*.tests", "*.tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "flask",
        "flask-cors",
        "SQLAlchemy>=1.4,<2.1",
        "psycopg2-binary",
        "pika",
        "minio",
        "requests",
        "python-magic",
        "rapidfuzz",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        'console_scripts': [
            'scanflow-api=scanflow.api.app:main',
            'scanflow-worker=scanflow.worker.worker:main',
            'scanflow-scanner=scanflow.scanner.run_scanner:main',
        ],
    },
    long_description=long_description,
    long_description_content_type="text/markdown",
)
