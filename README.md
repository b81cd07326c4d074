# kissmatch

Building blocks for registering two 3D point clouds. The package reads clouds and computes
fast FPFH descriptors. It matches those descriptors into point correspondences and measures
how close an estimated pose is to a known one.

## Installation

```
pip install .
```

To run the tests, install the test extra with `pip install .[test]` and then run `pytest`.

## Modules

### `kissmatch.cloud_io`

- `load_point_cloud(path)` picks a reader from the file extension and returns an `(N, 3)`
  float32 array. Any other extension raises `ValueError`.
  - `.pcd`: `ascii`, `binary` and `binary_compressed` (LZF) data.
  - `.ply`: `ascii`, `binary_little_endian` and `binary_big_endian` vertices.
  - `.bin`: raw float32 `(x, y, z, intensity)` records.
- `read_bin(path)` reads a whole raw `.bin` file.
- `load_cloud(path)` reads at most one million floats from a raw file.
- `finite_points(points)` drops points that have a NaN or infinite coordinate.
- `output_filename(input_path, resolution, prefix)` returns a name such as
  `prefix + "<stem>_res_1_00.pcd"`.
- `warped_filename(src_path)` returns `<dir>/<stem>_warped.pcd`.

### `kissmatch.geometry`

- `get_3d_rotation(yaw_deg, pitch_deg, roll_deg)` returns `Rz @ Ry @ Rx`.
- `yaw_transform(yaw_deg)` returns a 4x4 rotation about z.
- `transform_points(points, transform)` applies a 4x4 transform to `(N, 3)` points.
- `angular_error(r_exp, r_est)` returns the geodesic angle between two rotations, in radians.
- `calc_errors(transform, est_rot, est_ts)` returns `(rotation error in degrees, translation
  error)` measured against a 4x4 ground truth.
- `colorize(points, color)` returns a structured x/y/z/r/g/b array.
- `get_params(noise_bound, reg_type, robin_mode)` returns a `RegistrationParams` preset.
  `reg_type` is `"Quatro"` or `"TEASER"`; any other value raises `ValueError`.

### `kissmatch.pfh_features`

These are the low-level pieces of FPFH:

- the `Neighborhood` record;
- `compute_pair_features(p1, n1, p2, n2)`, which returns `(f1, f2, f3, f4)`, or `None` for
  degenerate pairs;
- `weight_point_spfh_signature(...)`, which distance-weights neighbour histograms into one
  signature;
- `is_normal_valid` and `check_nan`.

### `kissmatch.faster_pfh`

`FasterPFH(normal_radius, fpfh_radius, thr_linearity, criteria, use_non_maxima_suppression)`
estimates a normal for each point and rejects neighbourhoods that are too linear.

After `set_input_cloud(points)`, `compute_feature()` returns `(points, descriptors)`. It covers
only the points that keep enough valid neighbours, and each descriptor has 33 bins.

### `kissmatch.correspondence`

- `FeatureIndex` does exact nearest-neighbour search in feature space and reports squared
  distances.
- `normalize_clouds` centres the clouds and, optionally, scales them.
- `cross_check` keeps mutual matches.
- `tuple_lengths_consistent` compares triangle side lengths across the two clouds.

### `kissmatch.matcher`

`Matcher(thr_dist, num_max_corres, seed)` holds the matching settings. Its
`calculate_correspondences(...)` returns `(source index, target index)` pairs, using one of
two pipelines:

- **Optimized** (the default): keeps mutual nearest neighbours within `thr_dist` in feature
  space, then filters them with a randomized tuple test. With `tuple_scale == 0` this mode
  leaves the correspondences of the previous call unchanged.
- **Advanced**: normalizes the clouds, then applies an optional cross check and an optional
  tuple test. It returns sorted, deduplicated pairs.

Give `seed` to make the tuple test reproducible.

## Example

```python
from kissmatch.cloud_io import load_point_cloud, finite_points
from kissmatch.faster_pfh import FasterPFH
from kissmatch.matcher import Matcher

src = finite_points(load_point_cloud("source.bin"))
tgt = finite_points(load_point_cloud("target.bin"))

voxel = 0.3
features = []
for cloud in (src, tgt):
    pfh = FasterPFH(voxel * 2.5, voxel * 5.0, 0.9, "L2", False)
    pfh.set_input_cloud(cloud)
    features.append(pfh.compute_feature())

(src_pts, src_desc), (tgt_pts, tgt_desc) = features
matcher = Matcher(30.0, 600, 0)
pairs = matcher.calculate_correspondences(
    src_pts, tgt_pts, src_desc, tgt_desc, True, True, True, 0.95, True
)
print(len(pairs), "correspondences")
```

## What the package does not do

The package stops at correspondences. It does not provide:

- a pose solver: `RegistrationParams` only describes settings for one;
- a command-line program;
- voxel downsampling;
- writing point cloud files: the file-name helpers only build paths;
- a viewer.