# setup.py
from setuptools import setup, find_packages

setup(
    name="site_cloner",
    version="0.1.0",
    description="Офлайн-клонирование сайтов SiteCloner: обход, захват DOM и сети, ZIP-архив",
    packages=find_packages(exclude=("tests", "tests.*")),  # автоматически найдёт папку site_cloner
    package_data={"site_cloner": ["archive/templates/*.j2"]},
    install_requires=[
        "aiohttp>=3.9",
        "beautifulsoup4>=4.12",
        "click>=8.1",
        "Jinja2>=3.1",
        "playwright>=1.40",
        "pydantic>=2.5",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "lxml>=4.9",
        ],
    },
    entry_points={
        "console_scripts": [
            "site-cloner=site_cloner.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
