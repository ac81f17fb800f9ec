from setuptools import setup, find_packages

setup(
    name="dicom-batch",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydicom>=3.0.0",
        "numpy>=1.24.0",
        "Pillow>=10.0.0",
        "python-dateutil>=2.8.0",
        "openpyxl>=3.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dicom-batch=dicom_batch.cli:main",
        ],
    },
)
