import os
import sys

import pytest

# Add the parent directory to the path so the top-level packages import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

SAMPLE_URL = "https://diabetes.example.org/type-2/overview"
SAMPLE_TITLE = "Type 2 Diabetes Overview"

SAMPLE_HTML = """<!DOCTYPE html>
<html>
<head>
  <title>Type 2 Diabetes Overview</title>
  <script>var tracking = "should never appear";</script>
  <style>.hidden { display: none; }</style>
</head>
<body>
  <nav class="menu"><a href="/">Home</a> <a href="/about">About our organisation</a></nav>
  <div class="advertisement">Buy glucose meters now at a special discount price today</div>
  <main>
    <h1>Understanding Type 2 Diabetes</h1>
    <p class="last-reviewed">Last reviewed 2024-03-15</p>
    <p>Type 2 diabetes is a chronic condition that affects the way the body processes blood sugar. The pancreas makes insulin but the cells do not respond to it normally.</p>
    <h2>Symptoms</h2>
    <p>Common symptoms include increased thirst and frequent urination. Many people also notice fatigue and blurred vision over time.</p>
    <h3>Early warning signs</h3>
    <p>Early signs are often mild and can include hunger and slow healing sores on the feet and hands.</p>
    <h2>Treatment</h2>
    <p>Doctors recommend metformin as a first medication for most adults with type 2 diabetes. Insulin therapy is used when blood glucose stays high despite oral medication.</p>
    <ul>
      <li>Regular exercise helps the body use insulin more effectively every day.</li>
      <li>A healthy diet with fewer refined carbohydrates supports blood sugar control.</li>
    </ul>
    <h2>X</h2>
    <p>Short.</p>
  </main>
  <footer>Copyright footer text that should never appear in output</footer>
</body>
</html>
"""


@pytest.fixture
def sample_html():
    return SAMPLE_HTML


@pytest.fixture
def sample_url():
    return SAMPLE_URL


@pytest.fixture
def sample_title():
    return SAMPLE_TITLE
