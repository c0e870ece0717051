"""
Field of 3D point charges added on top of the 2D wire field.

The charges only see the planes of the cell, not the wires:
- A00 / B1X / B1Y: free space plus one mirror image per plane
- B2X / B2Y: charge between two parallel grounded planes (separation s,
  images every 2s). Far from the charge in the transverse direction a
  K0/K1 Bessel series is summed, close by the direct image sum.
- D10: the round tube with a central wire is mapped by log(z) onto a slab
  of width log(2R/d) and treated like B2X in the mapped frame.
Other cell types use the A00 form.
"""

import math
import numpy as np
from typing import List, Tuple
from numba import jit

from cell import CellState, CellType
from geometry import PointCharge
from numerics import SMALL, TWO_PI, bessel_k0, bessel_k1


_warned_d10_no_wire = False


@jit(nopython=True, fastmath=True, cache=True)
def slab_sum(da, dam, dt, dz, s, n_bessel, n_poly):
    """
    Unit point charge between two grounded planes separated by s.

    Args:
        da: distance to the charge across the planes
        dam: distance to the mirror charge across the planes
        dt, dz: transverse distances (in-plane coordinate and z)
        s: plane separation
        n_bessel, n_poly: number of terms of the two series

    Returns:
        (v, ea, et, ez): potential and field along a, t and z
    """
    v = 0.0
    ea = 0.0
    et = 0.0
    ez = 0.0
    rho2 = dt * dt + dz * dz
    if rho2 > (2.0 * s) ** 2:
        rho = math.sqrt(rho2)
        for j in range(1, n_bessel + 1):
            rr = math.pi * j * rho / s
            k0r = bessel_k0(rr)
            k1r = bessel_k1(rr)
            zzp = math.pi * j * da / s
            zzn = math.pi * j * dam / s
            dcos = math.cos(zzp) - math.cos(zzn)
            v += (2.0 / s) * k0r * dcos
            err = (TWO_PI * j / (s * s)) * k1r * dcos
            ea += (TWO_PI * j / (s * s)) * k0r * (math.sin(zzp) - math.sin(zzn))
            et += err * dt / rho
            ez += err * dz / rho
        return v, ea, et, ez

    for j in range(0, n_poly + 1):
        shift = 2.0 * j * s
        rr1 = math.sqrt((da + shift) ** 2 + rho2)
        rm1 = math.sqrt((dam - shift) ** 2 + rho2)
        rr13 = rr1 ** 3
        rm13 = rm1 ** 3
        if j == 0:
            v += 1.0 / rr1 - 1.0 / rm1
            ea += da / rr13 - dam / rm13
            et += dt * (1.0 / rr13 - 1.0 / rm13)
            ez += dz * (1.0 / rr13 - 1.0 / rm13)
            continue
        rr2 = math.sqrt((da - shift) ** 2 + rho2)
        rm2 = math.sqrt((dam + shift) ** 2 + rho2)
        rr23 = rr2 ** 3
        rm23 = rm2 ** 3
        v += 1.0 / rr1 + 1.0 / rr2 - 1.0 / rm1 - 1.0 / rm2
        ea += ((da + shift) / rr13 + (da - shift) / rr23 -
               (dam - shift) / rm13 - (dam + shift) / rm23)
        et += dt * (1.0 / rr13 + 1.0 / rr23 - 1.0 / rm13 - 1.0 / rm23)
        ez += dz * (1.0 / rr13 + 1.0 / rr23 - 1.0 / rm13 - 1.0 / rm23)
    return v, ea, et, ez


def _charge_arrays(charges: List[PointCharge]):
    xc = np.array([c.x for c in charges], dtype=np.float64)
    yc = np.array([c.y for c in charges], dtype=np.float64)
    zc = np.array([c.z for c in charges], dtype=np.float64)
    ec = np.array([c.e for c in charges], dtype=np.float64)
    return xc, yc, zc, ec


def field_3d_a00(state: CellState, charges: List[PointCharge], x: float, y: float,
                 z: float) -> Tuple[float, float, float, float]:
    #Coulomb field with one mirror image per plane direction
    xc, yc, zc, ec = _charge_arrays(charges)
    dx, dy, dz = x - xc, y - yc, z - zc
    r = np.sqrt(dx * dx + dy * dy + dz * dz)
    keep = r >= SMALL

    terms = [(dx, dy, 1.0)]
    dxm = xc + x - 2.0 * state.coplax
    dym = yc + y - 2.0 * state.coplay
    if state.ynplax:
        terms.append((dxm, dy, -1.0))
    if state.ynplay:
        terms.append((dx, dym, -1.0))
    if state.ynplax and state.ynplay:
        terms.append((dxm, dym, 1.0))

    ex = ey = ez = v = 0.0
    sums = [np.zeros_like(xc) for _ in range(4)]
    for ax, ay, sign in terms:
        rr = np.sqrt(ax * ax + ay * ay + dz * dz)
        keep &= rr >= SMALL
        with np.errstate(divide="ignore", invalid="ignore"):
            r3 = rr ** 3
            sums[0] += sign * ax / r3
            sums[1] += sign * ay / r3
            sums[2] += sign * dz / r3
            sums[3] += sign / rr
    if np.any(keep):
        ex = float(np.sum(ec[keep] * sums[0][keep]))
        ey = float(np.sum(ec[keep] * sums[1][keep]))
        ez = float(np.sum(ec[keep] * sums[2][keep]))
        v = float(np.sum(ec[keep] * sums[3][keep]))
    return ex, ey, ez, v


def _field_3d_b2(state: CellState, charges: List[PointCharge], x: float, y: float,
                 z: float, along_x: bool) -> Tuple[float, float, float, float]:
    #Charges between two planes at constant x (B2X) or y (B2Y)
    s = state.sx if along_x else state.sy
    nb, npoly = state.n_term_bessel, state.n_term_poly
    ex = ey = ez = v = 0.0
    for charge in charges:
        if x == charge.x and y == charge.y and z == charge.z:
            continue
        dz = z - charge.z
        if along_x:
            da, dt = x - charge.x, y - charge.y
            dam = x + charge.x - 2.0 * state.coplax
            has_mirror = state.ynplay
            dtm = y + charge.y - 2.0 * state.coplay
        else:
            da, dt = y - charge.y, x - charge.x
            dam = y + charge.y - 2.0 * state.coplay
            has_mirror = state.ynplax
            dtm = x + charge.x - 2.0 * state.coplax

        vs, ea, et, ezs = slab_sum(da, dam, dt, dz, s, nb, npoly)
        if has_mirror:
            # Negative image in the plane parallel to the slab axis
            vm, eam, etm, ezm = slab_sum(da, dam, dtm, dz, s, nb, npoly)
            vs -= vm
            ea -= eam
            et -= etm
            ezs -= ezm

        v += charge.e * vs
        ez += charge.e * ezs
        if along_x:
            ex += charge.e * ea
            ey += charge.e * et
        else:
            ex += charge.e * et
            ey += charge.e * ea
    return ex, ey, ez, v


def field_3d_d10(state: CellState, charges: List[PointCharge], x: float, y: float,
                 z: float) -> Tuple[float, float, float, float]:
    """
    Round tube with a wire on the axis. In the frame u = log r, phi the
    wire surface and the tube are two planes at log(d/2) and log(R); the
    charge and its copies at phi +/- 2 pi are summed with slab_sum and the
    field is rotated and scaled back by exp(-u).
    """
    global _warned_d10_no_wire
    central = np.nonzero(np.hypot(state.xw, state.yw) < SMALL)[0] if state.n_wires else []
    if len(central) == 0:
        if not _warned_d10_no_wire:
            print("[point_charges] Warning: no central wire, 3D charges ignored in this tube.")
            _warned_d10_no_wire = True
        return 0.0, 0.0, 0.0, 0.0
    r = math.hypot(x, y)
    if r <= 0.0:
        return 0.0, 0.0, 0.0, 0.0

    d0 = state.dw[central[0]]
    ssx = math.log(2.0 * state.cotube / d0)
    cpl = math.log(0.5 * d0)
    u = math.log(r)
    phi = math.atan2(y, x)

    eu = ephi = ez = v = 0.0
    for charge in charges:
        rc = math.hypot(charge.x, charge.y)
        if rc <= 0.0:
            continue
        uc = math.log(rc)
        dz = z - charge.z
        for image in (-1, 0, 1):
            phic = math.atan2(charge.y, charge.x) + image * TWO_PI
            da, dt = u - uc, phi - phic
            if da == 0.0 and dt == 0.0 and dz == 0.0:
                continue
            vs, ea, et, ezs = slab_sum(da, u + uc - 2.0 * cpl, dt, dz, ssx,
                                       state.n_term_bessel, state.n_term_poly)
            v += charge.e * vs
            eu += charge.e * ea
            ephi += charge.e * et
            ez += charge.e * ezs

    scale = math.exp(-u)
    c, s = math.cos(phi), math.sin(phi)
    return scale * (eu * c - ephi * s), scale * (eu * s + ephi * c), ez, v


def field_3d(state: CellState, charges: List[PointCharge], x: float, y: float,
             z: float) -> Tuple[float, float, float, float]:
    """
    Field and potential (ex, ey, ez, v) of the 3D point charges at (x, y, z),
    in the unfolded coordinates of the query.
    """
    if not charges:
        return 0.0, 0.0, 0.0, 0.0
    ctype = state.cell_type
    if ctype == CellType.B2X:
        return _field_3d_b2(state, charges, x, y, z, True)
    if ctype == CellType.B2Y:
        return _field_3d_b2(state, charges, x, y, z, False)
    if ctype == CellType.D10:
        return field_3d_d10(state, charges, x, y, z)
    return field_3d_a00(state, charges, x, y, z)
