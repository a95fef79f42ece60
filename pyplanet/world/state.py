from __future__ import annotations

"""
Persisted planet state.

PlanetSnapshot holds everything a host needs to resume a run:
- every per-cell field of the grid (primary fields, life codes, ice, geology
  and meteorology side tables), copied
- the river list and the next free river id
- the LifeSupportProfile constants (no per-tick profile state)
- the hydrology clock and the tick index

export_state / apply_snapshot move a snapshot in and out of a running
PlanetWorld (or anything exposing `grid`, `hydrology`, `life`, `tick_index`).
save_restart / load_restart write it to and read it from a NetCDF4 file with
the original dtypes (f8 stays f8, ice is stored as i1), so a round trip is exact.
"""

import os
from dataclasses import dataclass, field

import numpy as np

from ..ecology.profile import LifeSupportProfile
from ..routing import River


@dataclass
class PlanetSnapshot:
    width: int
    height: int
    fields: dict[str, np.ndarray] = field(default_factory=dict)
    rivers: list[River] = field(default_factory=list)
    next_river_id: int = 1
    profile: dict[str, float] = field(default_factory=dict)
    sim_time: float = 0.0
    tick_index: int = 0


def _copy_river(r: River) -> River:
    return River(id=int(r.id), source=tuple(r.source), mouth=tuple(r.mouth),
                 path=[(int(x), int(y)) for x, y in r.path], volume=float(r.volume))


def export_state(world) -> PlanetSnapshot:
    g = world.grid
    snap = PlanetSnapshot(width=g.width, height=g.height)
    for name, arr in g.iter_fields():
        snap.fields[name] = np.array(arr, copy=True)
    hydro = getattr(world, "hydrology", None)
    if hydro is not None:
        snap.rivers = [_copy_river(r) for r in hydro.rivers]
        snap.next_river_id = int(hydro.next_river_id)
        snap.sim_time = float(hydro.sim_time)
    life = getattr(world, "life", None)
    if life is not None:
        snap.profile = life.profile.to_dict()
    snap.tick_index = int(getattr(world, "tick_index", 0))
    return snap


def apply_snapshot(world, snap: PlanetSnapshot) -> None:
    """Load `snap` into `world`; the grid dimensions must match."""
    g = world.grid
    if (snap.width, snap.height) != (g.width, g.height):
        raise ValueError(f"snapshot is {snap.width}x{snap.height}, grid is {g.width}x{g.height}")
    for name, arr in g.iter_fields():
        if name in snap.fields:
            arr[...] = np.asarray(snap.fields[name]).astype(arr.dtype, copy=False)
    g.clamp_fields()
    hydro = getattr(world, "hydrology", None)
    if hydro is not None:
        hydro.restore_rivers([_copy_river(r) for r in snap.rivers], snap.next_river_id,
                             river_id=snap.fields.get("geology.river_id"))
        hydro.sim_time = float(snap.sim_time)
    life = getattr(world, "life", None)
    if life is not None and snap.profile:
        p = life.params
        life.profile = LifeSupportProfile.from_dict(snap.profile, blend=p.profile_blend,
                                                    relax=p.profile_relax)
    if hasattr(world, "tick_index"):
        world.tick_index = int(snap.tick_index)


# ----------------------------
# NetCDF restart files
# ----------------------------

def _var_name(qualified: str) -> str:
    return qualified.replace(".", "__")


def save_restart(path: str, snap: PlanetSnapshot) -> None:
    """Write `snap` to a NetCDF4 restart file at `path`."""
    try:
        from netCDF4 import Dataset
    except Exception as e:
        raise RuntimeError("netCDF4 is required for restart files. Please install 'netCDF4'.") from e

    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)

    with Dataset(path, "w", format="NETCDF4") as ds:
        ds.createDimension("y", snap.height)
        ds.createDimension("x", snap.width)
        ds.createDimension("river", None)
        ds.createDimension("river_point", None)

        for name, arr in snap.fields.items():
            a = np.asarray(arr)
            stored = a.astype(np.int8) if a.dtype == np.bool_ else a
            var = ds.createVariable(_var_name(name), stored.dtype, ("y", "x"), zlib=True, complevel=4)
            var.field_name = name
            var.source_dtype = str(a.dtype)
            var[:, :] = stored

        n = len(snap.rivers)
        rid = ds.createVariable("river_id", "i4", ("river",))
        src_x = ds.createVariable("river_source_x", "i4", ("river",))
        src_y = ds.createVariable("river_source_y", "i4", ("river",))
        mouth_x = ds.createVariable("river_mouth_x", "i4", ("river",))
        mouth_y = ds.createVariable("river_mouth_y", "i4", ("river",))
        vol = ds.createVariable("river_volume", "f8", ("river",))
        start = ds.createVariable("river_path_start", "i4", ("river",))
        length = ds.createVariable("river_path_length", "i4", ("river",))
        px = ds.createVariable("river_path_x", "i4", ("river_point",))
        py = ds.createVariable("river_path_y", "i4", ("river_point",))
        if n:
            rid[0:n] = np.array([r.id for r in snap.rivers], dtype=np.int32)
            src_x[0:n] = np.array([r.source[0] for r in snap.rivers], dtype=np.int32)
            src_y[0:n] = np.array([r.source[1] for r in snap.rivers], dtype=np.int32)
            mouth_x[0:n] = np.array([r.mouth[0] for r in snap.rivers], dtype=np.int32)
            mouth_y[0:n] = np.array([r.mouth[1] for r in snap.rivers], dtype=np.int32)
            vol[0:n] = np.array([r.volume for r in snap.rivers], dtype=np.float64)
            lengths = np.array([len(r.path) for r in snap.rivers], dtype=np.int32)
            starts = np.concatenate([[0], np.cumsum(lengths)[:-1]]).astype(np.int32)
            start[0:n] = starts
            length[0:n] = lengths
            pts = [p for r in snap.rivers for p in r.path]
            if pts:
                px[0:len(pts)] = np.array([p[0] for p in pts], dtype=np.int32)
                py[0:len(pts)] = np.array([p[1] for p in pts], dtype=np.int32)

        ds.title = "pyplanet restart"
        ds.history = "Created by pyplanet.world.state.save_restart"
        ds.width = np.int32(snap.width)
        ds.height = np.int32(snap.height)
        ds.next_river_id = np.int32(snap.next_river_id)
        ds.tick_index = np.int64(snap.tick_index)
        ds.sim_time = np.float64(snap.sim_time)
        for key, val in snap.profile.items():
            ds.setncattr("profile__" + key.replace(".", "__"), np.float64(val))


def load_restart(path: str) -> PlanetSnapshot:
    try:
        from netCDF4 import Dataset
    except Exception as e:
        raise RuntimeError("netCDF4 is required for restart files. Please install 'netCDF4'.") from e

    with Dataset(path, "r") as ds:
        ds.set_auto_mask(False)
        snap = PlanetSnapshot(width=int(ds.width), height=int(ds.height))
        for vname, var in ds.variables.items():
            if ("y", "x") != var.dimensions:
                continue
            name = getattr(var, "field_name", vname.replace("__", "."))
            a = np.array(var[:, :])
            src_dtype = getattr(var, "source_dtype", str(a.dtype))
            snap.fields[name] = a.astype(np.dtype(src_dtype), copy=False)

        ids = np.array(ds["river_id"][:])
        if ids.size:
            sx = np.array(ds["river_source_x"][:])
            sy = np.array(ds["river_source_y"][:])
            mx = np.array(ds["river_mouth_x"][:])
            my = np.array(ds["river_mouth_y"][:])
            vol = np.array(ds["river_volume"][:])
            starts = np.array(ds["river_path_start"][:])
            lengths = np.array(ds["river_path_length"][:])
            px = np.array(ds["river_path_x"][:])
            py = np.array(ds["river_path_y"][:])
            for k in range(ids.size):
                s, n = int(starts[k]), int(lengths[k])
                path = [(int(x), int(y)) for x, y in zip(px[s:s + n], py[s:s + n])]
                snap.rivers.append(River(id=int(ids[k]), source=(int(sx[k]), int(sy[k])),
                                         mouth=(int(mx[k]), int(my[k])), path=path,
                                         volume=float(vol[k])))

        snap.next_river_id = int(ds.next_river_id)
        snap.tick_index = int(ds.tick_index)
        snap.sim_time = float(ds.sim_time)
        for attr in ds.ncattrs():
            if attr.startswith("profile__"):
                key = attr[len("profile__"):].replace("__", ".")
                snap.profile[key] = float(ds.getncattr(attr))
    return snap


__all__ = ["PlanetSnapshot", "export_state", "apply_snapshot", "save_restart", "load_restart"]
