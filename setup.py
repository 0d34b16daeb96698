from setuptools import setup

setup(
    name="glossary-splitter",
    version="0.1.0",
    py_modules=["glossary_splitter", "run_splitter"],
    install_requires=[
        "langchain-core>=0.1.0",
        "python-dotenv>=0.21.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.3.1",
            "black>=23.7.0",
            "flake8>=6.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "glossary-splitter=run_splitter:main",
        ],
    },
    python_requires=">=3.9",
    description="Splits a [[def: ...]] Markdown glossary into one file per term and updates specs.json",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
