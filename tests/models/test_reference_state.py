import numpy as np
import pytest

from splinevar.models.reference_state import ReferenceState, bhyp_inverse, bhyp_transform
from splinevar.utils.constants import RD
from splinevar.utils.errors import ConfigurationError


def test_interpolation():
    """Temperature and moisture are linear between sounding levels."""
    ref = ReferenceState("jordan")
    assert ref.temperature(0.0) == pytest.approx(299.5)
    assert ref.temperature(0.25) == pytest.approx(0.5 * (299.5 + 296.6))
    assert ref.qv(3.5) == pytest.approx(0.5 * (7.5 + 5.2))
    np.testing.assert_allclose(ref.temperature(np.array([1.0, 2.0])), [294.0, 289.3])


def test_hydrostatic_pressure():
    """Pressure starts at the surface value and falls with roughly the scale height."""
    ref = ReferenceState("Jordan")
    z = np.linspace(0.0, 16.0, 33)
    p = ref.pressure(z)
    assert p[0] == pytest.approx(1015.1)
    assert (np.diff(p) < 0).all()
    assert 480.0 < ref.pressure(5.8) < 530.0
    assert 90.0 < ref.pressure(16.0) < 130.0


def test_density_from_ideal_gas():
    """Density follows from pressure and virtual temperature."""
    ref = ReferenceState()
    z = 2.0
    tv = ref.temperature(z) * (1.0 + 0.61e-3 * ref.qv(z))
    assert ref.rho(z) == pytest.approx(ref.pressure(z) * 100.0 / (RD * tv))
    assert ref.rhoa(z) < ref.rho(z)
    assert 1.1 < ref.rho(0.0) < 1.2


def test_unknown_profile():
    with pytest.raises(ConfigurationError, match="Unknown reference state"):
        ReferenceState("dunion")


def test_bhyp_round_trip():
    """The moisture transform inverts exactly and its inverse stays positive."""
    qv = np.array([0.001, 0.1, 5.0, 18.0])
    np.testing.assert_allclose(bhyp_inverse(bhyp_transform(qv)), qv)
    assert (bhyp_inverse(np.array([-50.0, -1.0, 0.0])) > 0).all()


def test_totals():
    """Zero perturbations give the reference state back."""
    ref = ReferenceState()
    z = np.array([0.5, 1.0, 2.0])
    zero = np.zeros((2, 2, 3))
    names = ("rhou", "rhov", "rhow", "tempk", "qv", "rhoa", "qr")
    fields = {name: zero for name in names}
    fields["rhou"] = np.ones((2, 2, 3))
    totals = ref.totals(fields, z)
    np.testing.assert_allclose(totals["temperature"][0, 0], ref.temperature(z))
    np.testing.assert_allclose(totals["qv_total"][1, 1], ref.qv(z))
    np.testing.assert_allclose(totals["rhoa_total"][0, 1], ref.rhoa(z))
    np.testing.assert_allclose(totals["u"][0, 0], 1.0 / totals["rho"][0, 0])
    np.testing.assert_allclose(totals["rho"][0, 0], ref.rho(z), rtol=1e-3)
