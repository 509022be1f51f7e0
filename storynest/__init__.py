from storynest.app import create_app
