"""Sanity checks for the mock servers themselves.

If these fail, the run tests are not exercising what they claim to.
"""

import httpx

from tests.integration.mock_server import render_page


class TestRenderPage:
    def test_variants_differ_only_in_whitespace(self):
        reference = render_page("Test", "10_N_20_E", "reference")
        candidate = render_page("Test", "10_N_20_E", "candidate")

        assert reference != candidate
        assert "".join(reference.split()) == "".join(candidate.split())

    def test_drift_page_differs_in_content(self):
        reference = render_page("Drift", "10.0_N_20_E", "reference")
        candidate = render_page("Drift", "10.0_N_20_E", "candidate")

        assert ">10.0<" in reference
        assert ">10.000000<" in candidate


class TestLiveServers:
    def test_servers_respond(self, fixture_dual_mock_servers):
        for name, server in fixture_dual_mock_servers.items():
            response = httpx.get(server.base_url + "geohack.php?pagename=Test&params=1_N_2_E")
            assert response.status_code == 200, name
            assert b"GeoHack - Test" in response.content
