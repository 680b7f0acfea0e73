"""Fake pyusb device shared by the device tests."""
import usb.core
import usb.util

import pytest


class FakeUsbDevice:
    """Records every call the session makes, in order."""

    def __init__(self, vendor_id=0x258a, product_id=0x0036, active_drivers=(0, 1),
                 fail_claim=(), fail_release=(), fail_attach=(), short_write=False):
        self.idVendor = vendor_id
        self.idProduct = product_id
        self.active_drivers = set(active_drivers)
        self.claimed = set()
        self.fail_claim = set(fail_claim)
        self.fail_release = set(fail_release)
        self.fail_attach = set(fail_attach)
        self.short_write = short_write
        self.calls = []

    def is_kernel_driver_active(self, interface):
        self.calls.append(('is_kernel_driver_active', interface))
        return interface in self.active_drivers

    def detach_kernel_driver(self, interface):
        self.calls.append(('detach', interface))
        self.active_drivers.discard(interface)

    def attach_kernel_driver(self, interface):
        self.calls.append(('attach', interface))
        if interface in self.fail_attach:
            raise usb.core.USBError('Entity not found')
        self.active_drivers.add(interface)

    def claim_interface(self, interface):
        self.calls.append(('claim', interface))
        if interface in self.fail_claim:
            raise usb.core.USBError('Resource busy')
        self.claimed.add(interface)

    def release_interface(self, interface):
        self.calls.append(('release', interface))
        if interface in self.fail_release:
            raise usb.core.USBError('No such device')
        self.claimed.discard(interface)

    def dispose(self):
        self.calls.append(('dispose',))

    def ctrl_transfer(self, bmRequestType, bRequest, wValue=0, wIndex=0,
                      data_or_wLength=None, timeout=None):
        self.calls.append(('ctrl_transfer', bmRequestType, bRequest, wValue, wIndex,
                           bytes(data_or_wLength), timeout))
        if self.short_write:
            return len(data_or_wLength) - 1
        return len(data_or_wLength)


@pytest.fixture
def fake_usb_util(monkeypatch):
    """Route usb.util interface calls to the fake device."""
    monkeypatch.setattr(usb.util, 'claim_interface',
                        lambda device, interface: device.claim_interface(interface))
    monkeypatch.setattr(usb.util, 'release_interface',
                        lambda device, interface: device.release_interface(interface))
    monkeypatch.setattr(usb.util, 'dispose_resources', lambda device: device.dispose())


@pytest.fixture
def fake_device(fake_usb_util):
    return FakeUsbDevice()
