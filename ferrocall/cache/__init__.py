# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
