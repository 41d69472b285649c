# rukpak

Tools for working with operator bundles: the `Bundle` and
`BundleDeployment` resource model, handlers that check and convert
bundle content, a controller that drives a bundle through unpacking and
storage, and a validator that decides whether a CustomResourceDefinition
upgrade is safe for the objects already stored in a cluster.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## What is inside

- `rukpak.api`: `Bundle`, `BundleDeployment` and their spec, source and
  status types (`BundleSource`, `ImageSource`, `GitSource`, `HTTPSource`,
  `ConfigMapSource`, `UploadSource`, ...), with `to_dict` / `from_dict`
  for the resource's JSON form. `from_dict` raises `ValueError` on a
  wrong `kind` or `apiVersion` or a missing `spec`.
  `set_status_condition` adds or updates a `Condition` in a list,
  moving its transition time only when the status changes;
  `find_status_condition` looks one up by type.
- `rukpak.bundlefs`: `BundleFS`, a read-only view of bundle content
  addressed by slash-separated relative paths, with `MemoryFS` (in
  memory) and `DirectoryFS` (on disk). `walk` lists a tree depth first in
  name order.
- `rukpak.annotations`: `parse_annotations_file` reads a bundle's
  `metadata/annotations.yaml` into `AnnotationsFile` / `Annotations`
  (package name, channels, default channel).
- `rukpak.plain`: the plain+v0 format. `validate_bundle` requires a flat
  `manifests/` directory holding at least one object; `handle_bundle`
  validates and returns the content unchanged;
  `handle_bundle_deployment` returns a `Chart` whose templates are the
  bundle's objects, labelled with the owning deployment, and no values.
- `rukpak.convert`: `registry_v1_to_plain` turns a registry+v1 bundle
  (a ClusterServiceVersion, CRDs and other manifests) into a plain+v0
  bundle with a single `manifests/manifest.yaml` holding the namespace,
  service accounts, roles, bindings, CRDs, other objects and
  deployments. `convert` does the same for an already parsed
  `RegistryV1`; the CSV must support the AllNamespaces install mode, and
  API service and webhook definitions are refused. `generate_name`
  appends a short hash to a name, keeping it within 63 characters.
- `rukpak.registry_provisioner`: `handle_bundle` converts a registry+v1
  bundle and validates the result as a plain bundle.
- `rukpak.crd`: `validate` compares a new CRD with the one already
  installed, refusing to drop stored versions and checking existing
  custom resources against changed or added schemas. Problems are raised
  as `CRDValidationError`. Cluster access goes through a `CRDClient`
  that you implement (`get_crd`, `list_resources`).
- `rukpak.crdvalidator`: `CrdValidator.handle` takes an
  `AdmissionRequest` and returns an `AdmissionResponse` (allowed,
  denied, or a 400 error for an undecodable object). Setting the
  annotation `core.rukpak.io/safe-crd-upgrade-validation: "false"` on a
  CRD turns the check off for it (`is_disabled`).
- `rukpak.predicate`: `DependentPredicate`, which decides whether an
  event on an object owned by a deployment needs another reconcile:
  creations and generic events do not, deletions do, and updates do
  unless only the status or resource version changed.
- `rukpak.bundle_controller`: `BundleController`, which runs finalizers,
  asks an unpacker for the bundle's content, converts it with an
  optional handler, stores it and records the phase, content URL and
  `Unpacked` condition in the bundle's status.
- `rukpak.unpack`: packs a directory into a tar.gz archive.

## Example

```python
from rukpak.bundlefs import DirectoryFS
from rukpak.convert import registry_v1_to_plain
from rukpak.plain import validate_bundle

plain_fs = registry_v1_to_plain(DirectoryFS("./my-operator-bundle"))
validate_bundle(plain_fs)
print(plain_fs.read_bytes("manifests/manifest.yaml").decode())
```

## Packing a bundle directory

`rukpak-unpack` writes a bundle directory as a gzip-compressed tar
archive and prints a JSON object to standard output whose `content`
field holds the archive, base64-encoded. Symbolic links are skipped and
file ownership is cleared.

```
rukpak-unpack --bundle-dir ./my-bundle > bundle.json
rukpak-unpack --version
```

The same archive is available from Python through
`rukpak.unpack.build_bundle_archive(bundle_dir)`.

## What this package does not do

- It has no Kubernetes client. `BundleController` and `CrdValidator`
  work against objects you pass in: a client with `get`,
  `update_status` and `update`, an unpacker, a storage and finalizers
  for the controller, and a `CRDClient` for CRD validation.
- It ships no unpackers for image, git, HTTP, config-map or upload
  sources, and no bundle storage or content server.
- It does not install anything: there is no BundleDeployment controller
  and no chart rendering or release management. `plain.Chart` only
  collects the objects to be installed.
- It runs no admission webhook server; `CrdValidator.handle` is the
  decision logic alone.