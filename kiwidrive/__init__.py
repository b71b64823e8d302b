"""kiwidrive: portable offline library on a removable drive.

Two entry points:

  - ``python -m kiwidrive.install``  stage a deployment onto a USB drive
  - ``python -m kiwidrive.control``  operator menu that runs from the drive

Quickstart::

    from kiwidrive.install.volumes import list_candidate_volumes
    from kiwidrive.install.staging import stage

    volumes = list_candidate_volumes()
    paths = stage(volumes[0], confirmed=True)
"""

__version__ = "1.0.0"
