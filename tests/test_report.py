"""
Test Suite for Report Module
============================

Tests for the LectureReport HTML renderer.
"""

import base64

import pytest
import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from statlectures.report import LectureReport, figure_to_base64


class TestLectureReport:
    """Tests for LectureReport class."""

    @pytest.fixture
    def report(self):
        return LectureReport('Regression', author='Course Staff')

    def test_title_and_author(self, report):
        html = report.render()

        assert html.startswith('<!DOCTYPE html>')
        assert '<title>Regression</title>' in html
        assert '<h1>Regression</h1>' in html
        assert 'Course Staff' in html

    def test_sections_render_in_order(self, report):
        report.add_heading('First').add_text('Some prose.').add_heading('Second', level=3)
        html = report.render()

        assert html.index('<h2>First</h2>') < html.index('<p>Some prose.</p>') < html.index('<h3>Second</h3>')

    def test_paragraphs_and_inline_code(self, report):
        report.add_text("Fit `y ~ x` first.\n\nThen   look at\nthe residuals.")
        html = report.render()

        assert '<p>Fit <code>y ~ x</code> first.</p>' in html
        assert '<p>Then look at the residuals.</p>' in html

    def test_escaping(self, report):
        report.add_text('a < b & c').add_code("df.query('x > 1')")
        html = report.render()

        assert 'a &lt; b &amp; c' in html
        assert 'df.query(&#39;x &gt; 1&#39;)' in html

    def test_table(self, report):
        df = pd.DataFrame({'term': ['a', 'b'], 'median': [1.23456, 2.0]})
        report.add_table(df, caption='Posterior', digits=2, index=False)
        html = report.render()

        assert '<table' in html
        assert '1.23' in html
        assert '1.2346' not in html
        assert 'Posterior' in html

    def test_long_table_truncated(self, report):
        report.add_table(pd.DataFrame({'x': range(50)}), max_rows=5)
        html = report.render()

        assert html.count('<td>') == 5
        assert 'first rows shown' in html

    def test_figure(self, report):
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])
        report.add_figure(fig, caption='A line')
        html = report.render()

        assert 'data:image/png;base64,' in html
        assert '<figcaption>A line</figcaption>' in html
        assert not plt.fignum_exists(fig.number)

    def test_metrics(self, report):
        report.add_metrics({'rmse': 1.234567, 'n': 10, 'agree': True}, digits=2)
        html = report.render()

        assert '<strong>rmse</strong>: 1.23' in html
        assert '<strong>n</strong>: 10' in html
        assert '<strong>agree</strong>: True' in html

    def test_numpy_metrics(self, report):
        """numpy scalars from pandas and numpy reductions are shown, not dropped."""
        report.add_metrics({'rows': np.int64(42), 'agree': np.bool_(True), 'rmse': np.float64(0.5)}, digits=1)
        html = report.render()

        assert '<strong>rows</strong>: 42' in html
        assert '<strong>agree</strong>: True' in html
        assert '<strong>rmse</strong>: 0.5' in html

    def test_unsupported_metric(self, report):
        with pytest.raises(TypeError):
            report.add_metrics({'skipped': [1, 2]})

    def test_title_and_author_escaped(self):
        html = LectureReport('<script>x</script>', author='A & B').render()

        assert '<script>x' not in html
        assert '&lt;script&gt;x&lt;/script&gt;' in html
        assert 'A &amp; B' in html

    def test_invalid_heading(self, report):
        with pytest.raises(ValueError):
            report.add_heading('Too big', level=1)

    def test_save(self, report, tmp_path):
        report.add_text('Hello.')
        path = report.save(str(tmp_path / 'out' / 'lecture.html'))

        assert path.exists()
        assert '<p>Hello.</p>' in path.read_text(encoding='utf-8')


def test_figure_to_base64_is_png():
    fig, _ = plt.subplots()
    encoded = figure_to_base64(fig)
    assert base64.b64decode(encoded)[:8] == b'\x89PNG\r\n\x1a\n'
